"""Prompt generation and gateway admin schemas."""

from pydantic import BaseModel, ConfigDict, Field


class GeneratePromptRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Lengths are checked by the gateway so errors share its response shape
    title: str = ""
    description: str = ""
    workspace_id: str = Field(default="", alias="workspaceId")
    user_id: str = Field(default="", alias="userId")


class GeneratePromptResponse(BaseModel):
    prompt: str
    cached: bool = False


class CacheInvalidateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    workspace_id: str | None = Field(default=None, alias="workspaceId")


class CacheInvalidateResponse(BaseModel):
    success: bool = True
    removed: int


class CacheStatsResponse(BaseModel):
    size: int
    calculated_size: int
    max_size: int
    ttl_seconds: float
    hits: int
    misses: int
    evictions: int
