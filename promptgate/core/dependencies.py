from fastapi import Request

from promptgate.gateway.gateway import PromptGateway


def get_gateway(request: Request) -> PromptGateway:
    """The process-wide gateway built at startup (see ``create_app``)."""
    return request.app.state.gateway
