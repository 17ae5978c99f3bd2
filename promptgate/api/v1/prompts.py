"""Prompt generation endpoint: turns an issue into an agent-ready prompt."""

from fastapi import APIRouter, Depends, Header, Response

from promptgate.api.responses import rate_limit_headers
from promptgate.core.config import settings
from promptgate.core.dependencies import get_gateway
from promptgate.core.exceptions import ValidationError
from promptgate.gateway.gateway import PromptGateway
from promptgate.schemas.prompt import GeneratePromptRequest, GeneratePromptResponse

router = APIRouter(tags=["prompts"])


@router.post("/generate-prompt", response_model=GeneratePromptResponse)
async def generate_prompt(
    body: GeneratePromptRequest,
    response: Response,
    x_user_id: str | None = Header(default=None),
    gateway: PromptGateway = Depends(get_gateway),
):
    """Generate a prompt through the workspace's configured provider.

    Rate limited per workspace (or per user when workspace scoping is disabled).
    """
    user_id = body.user_id or x_user_id or ""
    if settings.use_workspace_limit:
        rate_limit_key = body.workspace_id
    else:
        rate_limit_key = user_id
        if not rate_limit_key:
            raise ValidationError("User ID is required")

    result = await gateway.generate_prompt(
        workspace_id=body.workspace_id,
        title=body.title,
        description=body.description,
        rate_limit_key=rate_limit_key,
        user_id=user_id,
    )

    response.headers.update(rate_limit_headers(result.rate_limit))
    return GeneratePromptResponse(prompt=result.prompt, cached=result.cached)
