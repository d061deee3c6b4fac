from functools import lru_cache
from typing import Callable, Generator

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from rewind.core.security import decode_access_token
from rewind.db.session import get_sessionmaker
from rewind.models import ClipExport, User
from rewind.services.export_store import ExportStore
from rewind.services.notifier import WorkerNotifier, build_worker_notifier

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


def get_db() -> Generator[Session, None, None]:
    db = get_sessionmaker()()
    try:
        yield db
    finally:
        db.close()


def get_session_factory() -> Callable[[], Session]:
    """Factory for code that outlives the request session (status streams)."""
    return get_sessionmaker()


@lru_cache
def get_notifier() -> WorkerNotifier:
    return build_worker_notifier()


def get_export_store(db: Session = Depends(get_db)) -> ExportStore:
    return ExportStore(db)


def get_current_user(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> User:
    sub = decode_access_token(token)
    if not sub:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    user = db.query(User).filter(User.email == sub).first()
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="User not found")
    return user


def require_admin(current_user: User = Depends(get_current_user)) -> User:
    if not current_user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return current_user


def ensure_export_access(export: ClipExport, user: User) -> None:
    if export.created_by != user.id and not user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed to access this export")
