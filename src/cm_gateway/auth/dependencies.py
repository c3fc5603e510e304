"""FastAPI dependencies: get_current_user, require_admin.

Identity lives in the external identity service, so there is no user table:
the verified token claims are the whole user.

Usage in any protected router:
    from src.cm_gateway.auth.dependencies import CurrentUser, get_current_user

    @router.get("/protected")
    async def protected(user: CurrentUser = Depends(get_current_user)):
        ...
"""

from dataclasses import dataclass

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from src.cm_common.errors import AdminRequiredError, InvalidCredentialsError
from src.cm_gateway.auth.jwt_handler import decode_token

# Tokens are obtained from the identity service; tokenUrl only feeds Swagger UI
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/token")

# Reusable 401 exception with WWW-Authenticate header (OAuth2 standard)
_CREDENTIALS_EXCEPTION = HTTPException(
    status_code=status.HTTP_401_UNAUTHORIZED,
    detail="Invalid or expired token",
    headers={"WWW-Authenticate": "Bearer"},
)


@dataclass(frozen=True)
class CurrentUser:
    id: str
    account_id: str
    role: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


async def get_current_user(token: str = Depends(oauth2_scheme)) -> CurrentUser:
    """Validate the Bearer token and return the caller's identity.

    Raises HTTP 401 if the token is missing, invalid, expired, or lacks the
    sub/acct claims.
    """
    try:
        payload = decode_token(token)
    except InvalidCredentialsError:
        raise _CREDENTIALS_EXCEPTION from None

    user_id = payload.get("sub")
    account_id = payload.get("acct")
    if not user_id or not account_id:
        raise _CREDENTIALS_EXCEPTION
    return CurrentUser(id=str(user_id), account_id=str(account_id), role=payload.get("role"))


async def require_admin(
    current_user: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    """Raises HTTP 403 (AppError code 1006) unless the token carries role=admin."""
    if not current_user.is_admin:
        raise AdminRequiredError()
    return current_user
