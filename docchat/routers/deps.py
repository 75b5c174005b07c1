from fastapi import Header, HTTPException, Request

from ..config import settings
from ..container import Services


def get_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(503, "Service is starting up")
    return services


async def current_owner(
    x_user_id: str | None = Header(default=None),
    x_api_key: str | None = Header(default=None),
) -> str:
    """Identity of the authenticated caller, forwarded by the auth layer."""
    if settings.API_KEY and x_api_key != settings.API_KEY:
        raise HTTPException(401, "Invalid API key")
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(401, "User not authenticated")
    return x_user_id.strip()
