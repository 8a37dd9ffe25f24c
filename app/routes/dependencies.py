# app/routes/dependencies.py
"""
Shared route dependencies: the service container and the owning account.
"""

from fastapi import Header, HTTPException, Request, status

from app.config import settings
from app.services.container import ServiceContainer


def get_container(request: Request) -> ServiceContainer:
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Services not initialized"
        )
    return container


def get_account_id(x_account_id: str | None = Header(default=None)) -> str:
    """Owning account from X-Account-Id, else the configured default."""
    account_id = (x_account_id or "").strip()
    return account_id or settings.DEFAULT_ACCOUNT_ID
