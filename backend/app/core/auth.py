"""
JWT authentication for FastAPI.

Verifies HS256 session tokens issued by the frontend auth layer and maps the
token subject to a local User, creating the row on first sign-in.
"""
from typing import Any, Dict
from datetime import datetime

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.base import get_db
from app.models import User

bearer_scheme = HTTPBearer(auto_error=False)


def verify_session_token(token: str) -> Dict[str, Any]:
    """
    Verify and decode a session JWT.

    Token structure:
    {
      "sub": "auth_provider_user_id",
      "email": "user@example.com",
      "name": "User Name",
      "picture": "https://...",
      "iat": 1234567890,
      "exp": 1234567890
    }
    """
    if not settings.auth_jwt_secret:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Auth secret not configured",
        )

    try:
        claims = jwt.decode(
            token,
            settings.auth_jwt_secret,
            algorithms=[settings.auth_jwt_algorithm],
            options={"verify_aud": False},
        )
        return claims
    except JWTError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired authorization token",
        ) from exc


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> User:
    """
    Resolve the current authenticated user from a session JWT.

    - Expects Authorization: Bearer <jwt> header
    - Verifies and decodes the token
    - Maps the token subject to a local User via external_auth_id
    - Lazily creates a User row on first sign-in
    """
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    if credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication scheme",
        )

    claims = verify_session_token(credentials.credentials)

    external_auth_id = claims.get("sub")
    email = claims.get("email")

    if not external_auth_id or not email:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token: missing required claims",
        )

    user = db.query(User).filter(User.external_auth_id == external_auth_id).first()

    # Lazy-create user on first sign-in
    if not user:
        user = User(
            external_auth_id=external_auth_id,
            email=email,
            full_name=claims.get("name"),
            image_url=claims.get("picture"),
            is_active=True,
            last_login_at=datetime.utcnow(),
        )
        db.add(user)
        db.commit()
        db.refresh(user)
    else:
        # Profile fields follow the identity provider
        if claims.get("name"):
            user.full_name = claims.get("name")
        if claims.get("picture"):
            user.image_url = claims.get("picture")
        user.email = email
        user.last_login_at = datetime.utcnow()
        db.commit()
        db.refresh(user)

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is inactive",
        )

    return user
