# app/core/auth.py
import logging
import uuid
from typing import Any

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError
from sqlmodel import Session

from app.core.config import get_settings
from app.database import get_session
from app.models.user import User
from app.repositories.company_repo import CompanyRepository

settings = get_settings()
logger = logging.getLogger(__name__)

# Every commerce route acts on behalf of someone, so a missing header is
# turned into our own 401 below instead of FastAPI's 403.
bearer_scheme = HTTPBearer(auto_error=False)

company_repo = CompanyRepository()

ROLE_BUYER = "user"
ROLE_ADMIN = "admin"


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _forbidden(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


def decode_access_token(token: str) -> dict[str, Any]:
    """
    Verify a Supabase access token and return its claims.

    Signature and ``exp`` are checked; ``aud`` is not, Supabase issues
    several audiences for the same project.
    """
    try:
        return jwt.decode(
            token,
            settings.SUPABASE_JWT_SECRET,
            algorithms=[settings.SUPABASE_JWT_ALG],
            options={"verify_aud": False},
        )
    except JWTError:
        raise _unauthorized("Invalid or expired token")


def _provision_user(session: Session, user_id: uuid.UUID, claims: dict[str, Any]) -> User:
    """First request of a freshly signed-up account: create the profile row as a buyer."""
    email = claims["email"]
    metadata = claims.get("user_metadata") or {}
    user = User(
        id=user_id,
        email=email,
        name=(metadata.get("name") or email.split("@", 1)[0])[:100],
        phone=claims.get("phone") or None,
        role=ROLE_BUYER,
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    logger.info("Provisioned buyer profile for %s", user_id)
    return user


def require_auth(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    session: Session = Depends(get_session),
) -> User:
    """
    Resolve the acting user from the bearer token.

    The token ``sub`` is the Supabase auth id and doubles as ``User.id``.
    Unknown ids get a profile on the fly; admins are promoted by hand.

    Raises:
        HTTPException(401): header missing, token invalid, or claims unusable.
    """
    if credentials is None:
        raise _unauthorized("Authentication required")

    claims = decode_access_token(credentials.credentials)
    if not claims.get("sub") or not claims.get("email"):
        raise _unauthorized("Token missing sub/email")

    try:
        user_id = uuid.UUID(claims["sub"])
    except ValueError:
        raise _unauthorized("Invalid sub in token")

    user = session.get(User, user_id)
    if user is None:
        user = _provision_user(session, user_id, claims)
    return user


def require_admin(user: User = Depends(require_auth)) -> User:
    """Back-office operations: status changes, ledgers, approvals, sweeps."""
    if user.role != ROLE_ADMIN:
        raise _forbidden("Admin access required")
    return user


def require_user(user: User = Depends(require_auth)) -> User:
    # Admins never buy on their own account.
    if user.role != ROLE_BUYER:
        raise _forbidden("Buyer access required")
    return user


def require_buyer(
    user: User = Depends(require_user),
    session: Session = Depends(get_session),
) -> User:
    """
    Enforce a buyer whose company profile has been approved.

    Carts, orders, payments and the balance all hang off the Company row,
    so a buyer without one (or still awaiting review) cannot trade yet.
    """
    company = company_repo.get_by_user(session, user.id)
    if company is None or not company.is_approved:
        logger.info("Rejected unapproved buyer %s", user.id)
        raise _forbidden("Approved company account required")
    return user
