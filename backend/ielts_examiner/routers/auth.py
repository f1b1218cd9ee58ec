from datetime import datetime, timedelta, timezone
from typing import Optional, Dict
import logging
import uuid

from fastapi import APIRouter, HTTPException, Depends
from fastapi.security import OAuth2PasswordRequestForm, OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel

from ..settings import settings
from sqlalchemy.orm import Session
from ..db import get_db
from ..models import AuthUser, AuthSession

router = APIRouter(prefix="/auth", tags=["auth"])

logger = logging.getLogger(__name__)
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")

# Candidates can practise without an account
GUEST_USERNAMES = ("guest", "guests")
# Each guest login gets its own identity so sessions and archives stay apart
GUEST_PREFIX = "guest-"


class Token(BaseModel):
	access_token: str
	token_type: str = "bearer"


class User(BaseModel):
	username: str


_seed_users: Dict[str, str] = {}


def _seed_hash(username: str) -> Optional[str]:
	if settings.seed_username and settings.seed_password_plain and username == settings.seed_username:
		if username not in _seed_users:
			# bcrypt only looks at the first 72 bytes
			password = settings.seed_password_plain.encode("utf-8")[:72].decode("utf-8", errors="ignore")
			_seed_users[username] = pwd_context.hash(password)
		return _seed_users[username]
	return None


def authenticate_user(db: Session, username: str, password: str) -> Optional[User]:
	if username.lower() in GUEST_USERNAMES:
		return User(username=username.lower())
	row = db.query(AuthUser).filter(AuthUser.username == username).first()
	if row and pwd_context.verify(password, row.password_hash):
		return User(username=username)
	hashed = _seed_hash(username)
	if hashed and pwd_context.verify(password, hashed):
		return User(username=username)
	return None


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
	to_encode = data.copy()
	delta = expires_delta or timedelta(minutes=max(1, settings.access_token_expire_minutes))
	to_encode.update({"exp": datetime.now(timezone.utc) + delta})
	return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


@router.post("/token", response_model=Token)
async def login(form_data: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)):
	user = authenticate_user(db, form_data.username, form_data.password)
	if not user:
		raise HTTPException(status_code=401, detail="Incorrect username or password")
	session_id = uuid.uuid4().hex
	if user.username in GUEST_USERNAMES:
		user = User(username=f"{GUEST_PREFIX}{session_id[:12]}")
	db.merge(AuthSession(session_id=session_id, username=user.username))
	db.commit()
	logger.info("User %s logged in", user.username)
	return Token(access_token=create_access_token({"sub": user.username, "jti": session_id}))


def get_current_user(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> User:
	credentials_exception = HTTPException(status_code=401, detail="Could not validate credentials")
	try:
		payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
	except JWTError:
		raise credentials_exception
	username: str | None = payload.get("sub")
	jti: str | None = payload.get("jti")
	if username is None or jti is None:
		raise credentials_exception
	# Tokens whose login row was purged or revoked no longer validate
	row = db.get(AuthSession, jti)
	if not row or row.username != username:
		raise credentials_exception
	row.last_activity_at = datetime.utcnow()
	db.commit()
	return User(username=username)


@router.get("/me", response_model=User)
async def me(user: User = Depends(get_current_user)):
	return user


class RegisterRequest(BaseModel):
	username: str
	password: str
	email: Optional[str] = None


@router.post("/register", status_code=201)
async def register(req: RegisterRequest, db: Session = Depends(get_db)):
	username = (req.username or "").strip()
	password = req.password or ""
	if not username or not password:
		raise HTTPException(status_code=400, detail="username and password are required")
	if len(username) < 3 or len(username) > 128:
		raise HTTPException(status_code=400, detail="username must be 3-128 characters")
	if username.lower() in GUEST_USERNAMES or username.lower().startswith(GUEST_PREFIX):
		raise HTTPException(status_code=400, detail="username is reserved")
	if len(password.encode("utf-8")) > 72:
		raise HTTPException(status_code=400, detail="password must be at most 72 bytes")
	if db.query(AuthUser).filter(AuthUser.username == username).first():
		raise HTTPException(status_code=409, detail="username already exists")
	email = (req.email or "").strip() or None
	db.add(AuthUser(username=username, password_hash=pwd_context.hash(password), email=email))
	db.commit()
	return {"ok": True}
