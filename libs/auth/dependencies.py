import secrets
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import APIKeyHeader

from libs.auth.models import ApiCaller
from libs.common.config import get_settings

internal_key_header = APIKeyHeader(name="X-Internal-Key", auto_error=False)
admin_key_header = APIKeyHeader(name="X-Admin-Key", auto_error=False)
admin_name_header = APIKeyHeader(name="X-Admin-Name", auto_error=False)


def _matches(provided: Optional[str], expected: str) -> bool:
    if not provided or not expected:
        return False
    return secrets.compare_digest(provided.encode(), expected.encode())


async def require_internal_service(
    api_key: Annotated[Optional[str], Depends(internal_key_header)],
) -> ApiCaller:
    """
    Authenticate the bot transport calling the internal endpoints.
    """
    if not _matches(api_key, get_settings().INTERNAL_API_KEY):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid internal API key",
        )
    return ApiCaller(role="internal", name="bot")


async def require_admin(
    api_key: Annotated[Optional[str], Depends(admin_key_header)],
    admin_name: Annotated[Optional[str], Depends(admin_name_header)],
) -> ApiCaller:
    """
    Authenticate the admin panel.
    """
    if not _matches(api_key, get_settings().ADMIN_API_KEY):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required",
        )
    return ApiCaller(role="admin", name=admin_name or "admin")
