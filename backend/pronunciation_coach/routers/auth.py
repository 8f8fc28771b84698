from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, Request
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from ..db import get_db
from ..models import User
from ..settings import Settings

# Tokens are issued by the platform's auth service; this service only verifies them
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")


def _resolve_expiry(settings: Settings, expires_delta: Optional[timedelta]) -> datetime:
	delta = expires_delta
	if delta is None:
		minutes = settings.access_token_expire_minutes
		delta = timedelta(minutes=minutes) if minutes > 0 else timedelta(days=30)
	return datetime.now(timezone.utc) + delta


def create_access_token(user_id: str, settings: Settings, expires_delta: Optional[timedelta] = None) -> str:
	to_encode = {"sub": user_id, "exp": _resolve_expiry(settings, expires_delta)}
	return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def get_current_user(
	request: Request,
	token: str = Depends(oauth2_scheme),
	db: Session = Depends(get_db),
) -> User:
	settings: Settings = request.app.state.settings
	credentials_exception = HTTPException(
		status_code=401,
		detail="Could not validate credentials",
		headers={"WWW-Authenticate": "Bearer"},
	)
	try:
		payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
		user_id: str | None = payload.get("sub")
		if user_id is None:
			raise credentials_exception
	except JWTError:
		raise credentials_exception
	user = db.get(User, user_id)
	if user is None or not user.is_active:
		raise credentials_exception
	return user
