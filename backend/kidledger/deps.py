"""FastAPI dependencies shared by the route modules.

Identity is handled upstream: whatever authenticates the request passes
the acting user's id in the ``X-Actor-Id`` header and the engine records
it on every mutation.
"""

from fastapi import Header, HTTPException, status

from kidledger.database import async_session
from kidledger.services import Services, build_services

_services: Services | None = None


def get_services() -> Services:
    """Return the process-wide engine services, building them on first use."""
    global _services
    if _services is None:
        _services = build_services(async_session)
    return _services


async def get_actor_id(x_actor_id: str | None = Header(default=None)) -> str:
    if not x_actor_id or not x_actor_id.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Actor-Id header is required",
        )
    return x_actor_id.strip()
