import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from booking_backend.auth import jwt_handler
from booking_backend.models.user import ADMIN_ROLE, PROVIDER_ROLE, User
from booking_backend.routes.deps import get_db

security = HTTPBearer()


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    token = credentials.credentials
    try:
        payload = jwt_handler.decode_access_token(token)
    except jwt.PyJWTError as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc

    email = payload.get("sub")
    if not email:
        raise HTTPException(status_code=401, detail="Invalid token subject")

    user = db.query(User).filter(User.email == email).first()
    if user is None:
        raise HTTPException(status_code=401, detail="User not found")
    return user


def get_current_provider(current_user: User = Depends(get_current_user)) -> User:
    if current_user.role not in {PROVIDER_ROLE, ADMIN_ROLE}:
        raise HTTPException(status_code=403, detail="Only providers can manage availability.")
    return current_user
