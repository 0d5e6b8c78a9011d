from datetime import datetime, timedelta
from typing import List, Optional
import hashlib
import logging
import re
import secrets

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

import config
from database import get_db
from models import SessionToken, User

logger = logging.getLogger(__name__)

PASSWORD_MIN_LENGTH = 8


def verify_password(plain_password, hashed_password):
    """Verify a password against a hash"""
    if not hashed_password or len(hashed_password) <= 32:
        return False
    salt = hashed_password[:32]  # First 32 chars are the salt
    stored_hash = hashed_password[32:]
    new_hash = hashlib.pbkdf2_hmac(
        'sha256',
        plain_password.encode('utf-8'),
        salt.encode('utf-8'),
        100000
    ).hex()
    return secrets.compare_digest(new_hash, stored_hash)


def get_password_hash(password):
    """Generate a salted hash for a password"""
    salt = secrets.token_hex(16)
    hash = hashlib.pbkdf2_hmac(
        'sha256',
        password.encode('utf-8'),
        salt.encode('utf-8'),
        100000
    ).hex()
    return salt + hash


def validate_password(password: str) -> List[str]:
    """Return the list of password policy violations (empty when valid)"""
    problems = []
    if len(password) < PASSWORD_MIN_LENGTH:
        problems.append(f"Password must be at least {PASSWORD_MIN_LENGTH} characters")
    if not re.search(r"[A-Z]", password):
        problems.append("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password):
        problems.append("Password must contain at least one lowercase letter")
    if not re.search(r"[0-9]", password):
        problems.append("Password must contain at least one number")
    return problems


def generate_token(length: int = 32) -> str:
    return secrets.token_hex(length // 2)


def generate_verification_token():
    """Generate a random token for email verification"""
    return secrets.token_urlsafe(32)


# Session helpers

def client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


def set_flash(request: Request, message: str, type: str = "info"):
    request.session["flash_message"] = {"message": message, "type": type}


def pop_flash(request: Request) -> Optional[dict]:
    return request.session.pop("flash_message", None)


def get_csrf_token(request: Request) -> str:
    token = request.session.get("csrf_token")
    if not token:
        token = generate_token(config.CSRF_TOKEN_LENGTH)
        request.session["csrf_token"] = token
    return token


def verify_csrf_token(request: Request, token: Optional[str]) -> bool:
    session_token = request.session.get("csrf_token")
    if not session_token or not isinstance(token, str) or not token:
        return False
    return secrets.compare_digest(session_token.encode(), token.encode())


def login_user(request: Request, db: Session, user: User) -> None:
    """Start a fresh session for `user` and record its server-side token"""
    request.session.clear()
    token = generate_token(64)
    db.add(SessionToken(
        user_id=user.user_id,
        token=token,
        ip_address=client_ip(request),
        user_agent=(request.headers.get("user-agent") or "")[:255],
        expires_at=datetime.now() + timedelta(seconds=config.SESSION_LIFETIME),
    ))
    db.commit()

    request.session.update({
        "user_id": user.user_id,
        "user_name": user.name,
        "user_email": user.email,
        "user_type": user.type_name,
        "session_token": token,
    })


def logout_user(request: Request, db: Session) -> None:
    token = request.session.get("session_token")
    if token:
        db.query(SessionToken).filter(SessionToken.token == token).delete()
        db.commit()
    request.session.clear()


def get_optional_user(request: Request, db: Session = Depends(get_db)) -> Optional[User]:
    user_id = request.session.get("user_id")
    token = request.session.get("session_token")
    if not user_id or not token:
        return None

    session_token = (
        db.query(SessionToken)
        .filter(SessionToken.token == token, SessionToken.user_id == user_id)
        .first()
    )
    if session_token is None or session_token.expires_at < datetime.now():
        request.session.clear()
        return None

    user = db.query(User).filter(User.user_id == user_id).first()
    if user is None or not user.is_active:
        request.session.clear()
        return None
    return user


async def get_current_user(user: Optional[User] = Depends(get_optional_user)) -> User:
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    return user


async def get_verified_user(current_user: User = Depends(get_current_user)) -> User:
    if not current_user.is_verified:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Email not verified"
        )
    return current_user


async def get_admin_user(current_user: User = Depends(get_current_user)) -> User:
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return current_user
