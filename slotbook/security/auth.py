"""Bearer-token verification for tokens issued by the identity provider.

This service never issues or revokes tokens; it verifies the signature,
reads the ``sub`` claim and maps it to a local ``users`` row.
"""
from jose import jwt, JWTError
from fastapi import HTTPException, Depends, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from slotbook.config import SECRET_KEY, ALGORITHM
from slotbook.models.user_model import User
from slotbook.database import get_db
from slotbook.services.user_crud import user_crud

bearer_scheme = HTTPBearer(auto_error=False)


def credentials_exception(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def decode_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise credentials_exception()
    if not payload.get("sub"):
        raise credentials_exception()
    return payload


def user_from_token(db: Session, token: str) -> User:
    payload = decode_token(token)
    user = user_crud.provision_user(db, payload["sub"], payload)
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is inactive."
        )
    return user


def get_current_user(
        credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
        db: Session = Depends(get_db),
) -> User:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise credentials_exception("Not authenticated")
    return user_from_token(db, credentials.credentials)


def get_current_admin_user(current_user: User = Depends(get_current_user)) -> User:
    """Get current user and ensure they are admin"""
    if current_user.role != "admin":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return current_user
