import secrets

from fastapi import Depends, Header, Request

from shared.exceptions.errors import Forbidden, Unauthorized
from shared.models.access import Principal, Role


async def verify_api_key(request: Request, x_api_key: str | None = Header(default=None)) -> None:
    """Verify the X-Api-Key header against API_SERVER_API_KEY.

    Raises:
        Unauthorized: If the key is missing or does not match.
    """
    helper_config = request.app.state.helper_config
    expected_key = helper_config.get_string_val("API_SERVER_API_KEY")
    if not x_api_key or not secrets.compare_digest(x_api_key, expected_key):
        raise Unauthorized("Invalid or missing API key")


async def get_principal(
    _: None = Depends(verify_api_key),
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
) -> Principal:
    """Resolve the caller from the X-User-Id / X-User-Role headers set by the authenticating gateway.

    Raises:
        Unauthorized: If no user id is present or the role is unknown.
    """
    if not x_user_id or not x_user_id.strip():
        raise Unauthorized("Missing user identity")
    role = None
    if x_user_role and x_user_role.strip():
        try:
            role = Role(x_user_role.strip().lower())
        except ValueError:
            raise Unauthorized("Unknown user role")
    return Principal(id=x_user_id.strip(), role=role)


async def require_admin(principal: Principal = Depends(get_principal)) -> Principal:
    """Like get_principal, but only admits administrators.

    Raises:
        Forbidden: If the caller is not an administrator.
    """
    if not principal.is_admin:
        raise Forbidden()
    return principal
