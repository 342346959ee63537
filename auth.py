import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError, jwt
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.orm import Session
from werkzeug.security import check_password_hash, generate_password_hash

from config import JWT_ALG, JWT_SECRET, TOKEN_COOKIE, TOKEN_EXPIRE_MIN
from database import get_db
from models import Business, BusinessOwner, Product, User

logger = logging.getLogger(__name__)

MISSING_TOKEN = "Access denied. No authentication token provided."
EXPIRED_TOKEN = "Token has expired. Please log in again."
INVALID_TOKEN = "Invalid token. Please log in again."
INACTIVE_ACCOUNT = "This account is no longer active."


class TokenError(Exception):
    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason  # 'expired' | 'malformed'


class Identity(BaseModel):
    id: int
    username: str
    account_type: str = 'user'
    is_admin: bool = False


# ---------------------- Passwords ----------------------
def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(password_hash: str, password: str) -> bool:
    return check_password_hash(password_hash, password)


# ---------------------- Tokens ----------------------
def create_token(user, expires_minutes: int = TOKEN_EXPIRE_MIN) -> str:
    now = datetime.now(timezone.utc)
    exp = now + timedelta(minutes=expires_minutes)
    to_encode = {
        "sub": str(user.id),
        "username": user.username,
        "account_type": user.account_type,
        "is_admin": bool(user.is_admin),
        "iat": now,
        "exp": exp,
    }
    return jwt.encode(to_encode, JWT_SECRET, algorithm=JWT_ALG)


def decode_token(token: str) -> Dict[str, Any]:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALG])
    except ExpiredSignatureError:
        raise TokenError('expired')
    except JWTError:
        raise TokenError('malformed')


def identity_from_claims(claims: Dict[str, Any]) -> Identity:
    try:
        return Identity(
            id=int(claims["sub"]),
            username=claims["username"],
            account_type=claims.get("account_type", "user"),
            is_admin=bool(claims.get("is_admin", False)),
        )
    except (KeyError, TypeError, ValueError):
        raise TokenError('malformed')


bearer_scheme = HTTPBearer(auto_error=False)


def extract_token(request: Request, creds: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    """Bearer header wins over the cookie."""
    if creds and creds.credentials:
        return creds.credentials
    return request.cookies.get(TOKEN_COOKIE) or None


def is_active_user(session: Session, user_id: int) -> bool:
    return bool(session.scalar(select(User.is_active).where(User.id == user_id)))


def get_current_user(
    request: Request,
    creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    session: Session = Depends(get_db),
) -> Identity:
    token = extract_token(request, creds)
    if not token:
        raise HTTPException(status_code=401, detail=MISSING_TOKEN)
    try:
        identity = identity_from_claims(decode_token(token))
    except TokenError as e:
        logger.info("Token verification failed: %s", e.reason)
        detail = EXPIRED_TOKEN if e.reason == 'expired' else INVALID_TOKEN
        raise HTTPException(status_code=401, detail=detail)
    # a deleted account's token stops working immediately
    if not is_active_user(session, identity.id):
        raise HTTPException(status_code=401, detail=INACTIVE_ACCOUNT)
    return identity


def get_optional_user(
    request: Request,
    creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    session: Session = Depends(get_db),
) -> Optional[Identity]:
    """Like get_current_user, but a missing or bad token just means anonymous."""
    token = extract_token(request, creds)
    if not token:
        return None
    try:
        identity = identity_from_claims(decode_token(token))
    except TokenError:
        return None
    return identity if is_active_user(session, identity.id) else None


def require_admin(user: Identity = Depends(get_current_user)) -> Identity:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


# ---------------------- Ownership ----------------------
def owner_user_id(session: Session, kind: str, resource_id: int) -> Optional[int]:
    """Return the user id owning an active business or product, or None."""
    if kind == 'business':
        stmt = (
            select(BusinessOwner.user_id)
            .join(Business, Business.owner_id == BusinessOwner.id)
            .where(Business.id == resource_id, Business.is_active.is_(True))
        )
    elif kind == 'product':
        stmt = (
            select(BusinessOwner.user_id)
            .join(Business, Business.owner_id == BusinessOwner.id)
            .join(Product, Product.business_id == Business.id)
            .where(Product.id == resource_id, Product.is_active.is_(True))
        )
    else:
        raise ValueError(f"Invalid resource type: {kind}")
    return session.scalar(stmt)


def check_owner(session: Session, kind: str, resource_id: int, user: Identity) -> Identity:
    owner_id = owner_user_id(session, kind, resource_id)
    if owner_id is None:
        raise HTTPException(status_code=404, detail=f"{kind.capitalize()} not found")
    if owner_id != user.id:
        raise HTTPException(status_code=403, detail=f"You don't have permission to modify this {kind}")
    return user


def require_owner(kind: str):
    """Dependency factory guarding /{business_id} and /{product_id} routes."""
    if kind == 'business':
        def business_owner(
            business_id: int,
            user: Identity = Depends(get_current_user),
            session: Session = Depends(get_db),
        ) -> Identity:
            return check_owner(session, 'business', business_id, user)
        return business_owner
    if kind == 'product':
        def product_owner(
            product_id: int,
            user: Identity = Depends(get_current_user),
            session: Session = Depends(get_db),
        ) -> Identity:
            return check_owner(session, 'product', product_id, user)
        return product_owner
    raise ValueError(f"Invalid resource type: {kind}")
