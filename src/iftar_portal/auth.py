"""Admin authentication and rate limiting helpers for the API."""

import os
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from passlib.context import CryptContext
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.ext.asyncio import AsyncSession

from .config import PortalConfig
from .database import AdminUser, AdminUserRepository
from .dependencies import get_config
from .exceptions import AuthenticationError, InvalidTransitionError, ValidationError

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)

# Rate limiter
limiter = Limiter(
    key_func=get_remote_address,
    enabled=os.getenv("RATE_LIMIT_ENABLED", "true").lower() not in ("0", "false", "no"),
)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
ALGORITHM = "HS256"
TOKEN_TYPE = "admin"
MIN_PASSWORD_LENGTH = 8


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


def create_admin_token(subject: str, config: PortalConfig, expires_minutes: Optional[int] = None) -> str:
    if expires_minutes is None:
        expires_minutes = config.admin_token_expire_minutes
    exp = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    payload = {"sub": subject, "type": TOKEN_TYPE, "exp": exp}
    return jwt.encode(payload, config.admin_token_secret, algorithm=ALGORITHM)


def decode_admin_token(token: str, config: PortalConfig) -> Dict[str, Any]:
    """Decode and check an admin token.

    Raises:
        AuthenticationError: If the token is malformed, expired or not an admin token.
    """
    try:
        payload = jwt.decode(token, config.admin_token_secret, algorithms=[ALGORITHM])
    except JWTError as e:
        raise AuthenticationError("Invalid or expired token") from e
    if payload.get("type") != TOKEN_TYPE or not payload.get("sub"):
        raise AuthenticationError("Invalid or expired token")
    return payload


class AdminAuthService:
    """Issues admin tokens against the admin_users table."""

    def __init__(self, session: AsyncSession, config: Optional[PortalConfig] = None):
        self.session = session
        self.config = config or PortalConfig.from_env()
        self.admin_repo = AdminUserRepository(session)

    async def create_admin(self, email: str, password: str, full_name: Optional[str] = None) -> AdminUser:
        """Create a back-office account.

        Raises:
            ValidationError: If the email or password is unusable.
            InvalidTransitionError: If the email is already registered.
        """
        if "@" not in (email or ""):
            raise ValidationError("A valid email is required")
        if len(password or "") < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        if await self.admin_repo.get_by_email(email) is not None:
            raise InvalidTransitionError(f"Admin {email} already exists")
        return await self.admin_repo.create(email, hash_password(password), full_name)

    async def authenticate(self, email: str, password: str) -> str:
        """Check credentials and return a signed admin token.

        Raises:
            AuthenticationError: On unknown email, inactive account or wrong password.
        """
        admin = await self.admin_repo.get_by_email(email or "")
        if admin is None or not admin.is_active or not verify_password(password or "", admin.password_hash):
            logger.warning(f"Failed admin login for {email}")
            raise AuthenticationError("Invalid credentials")
        logger.info(f"Admin {admin.email} logged in")
        return create_admin_token(admin.email, self.config)


async def require_admin(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(security),
    config: PortalConfig = Depends(get_config),
) -> str:
    """Verify the admin bearer token on a request.

    Args:
        credentials: HTTP Bearer credentials from the request.
        config: Portal configuration holding the signing secret.

    Returns:
        Email of the authenticated admin.

    Raises:
        HTTPException: 401 if the token is missing, invalid or expired.
    """
    if credentials is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        payload = decode_admin_token(credentials.credentials, config)
    except AuthenticationError as e:
        raise HTTPException(status_code=401, detail=e.message)
    return payload["sub"]
