from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from depot.config import ACCESS_TOKEN_EXPIRE_MINUTES, JWT_ALGORITHM, JWT_SECRET_KEY
from depot.db import get_db
from depot.models import Module, User, UserModuleAccess
from depot.module_keys import MODULE_DEFINITIONS, MODULE_KEYS, ModuleKey

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


@dataclass(frozen=True)
class AuthContext:
    """Who is performing an inventory mutation.

    Built per request from the authenticated user and passed explicitly into
    the inventory services; there is no process-wide admin flag.
    """

    actor: Optional[str]
    user_id: Optional[int] = None
    is_admin: bool = False
    modules: frozenset = field(default_factory=frozenset)

    def can(self, module_key: str) -> bool:
        return self.is_admin or module_key in self.modules

    @classmethod
    def system(cls, actor: str = "system") -> "AuthContext":
        return cls(actor=actor, is_admin=True, modules=frozenset(MODULE_KEYS))


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, password_hash: str) -> bool:
    return pwd_context.verify(plain_password, password_hash)


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)


def _get_allowed_modules(db: Session, user: User) -> list[str]:
    if user.is_admin:
        return list(MODULE_KEYS)

    rows = (
        db.query(Module.key)
        .join(UserModuleAccess, UserModuleAccess.module_id == Module.id)
        .filter(UserModuleAccess.user_id == user.id)
        .all()
    )
    return [key for (key,) in rows]


def get_current_user(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> User:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
        user_id = payload.get("sub")
        if user_id is None:
            raise credentials_exception
    except JWTError:
        raise credentials_exception

    user = db.query(User).filter(User.id == int(user_id)).first()
    if not user or not user.is_active:
        raise credentials_exception
    return user


def build_auth_context(db: Session, user: User) -> AuthContext:
    return AuthContext(
        actor=user.email,
        user_id=user.id,
        is_admin=bool(user.is_admin),
        modules=frozenset(_get_allowed_modules(db, user)),
    )


def get_auth_context(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> AuthContext:
    return build_auth_context(db, current_user)


def require_module(module_key: str):
    def dependency(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> User:
        if current_user.is_admin:
            return current_user
        allowed = _get_allowed_modules(db, current_user)
        if module_key not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Not authorized for module '{module_key}'",
            )
        return current_user

    return dependency


def require_admin(current_user: User = Depends(get_current_user)) -> User:
    if not current_user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return current_user


def seed_modules(db: Session) -> int:
    existing = {row[0] for row in db.query(Module.key).all()}
    created = 0
    for module_key, name in MODULE_DEFINITIONS:
        if module_key.value not in existing:
            db.add(Module(key=module_key.value, name=name))
            created += 1
    return created


def grant_modules(db: Session, user: User, module_keys: list[ModuleKey]) -> None:
    modules = db.query(Module).filter(Module.key.in_([key.value for key in module_keys])).all()
    granted = {access.module_id for access in db.query(UserModuleAccess).filter(UserModuleAccess.user_id == user.id)}
    for module in modules:
        if module.id not in granted:
            db.add(UserModuleAccess(user_id=user.id, module_id=module.id))
