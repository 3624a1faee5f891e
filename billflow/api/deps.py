"""
FastAPI dependencies (DB session, notification services) and error mapping
"""
from contextlib import contextmanager

from fastapi import Depends, HTTPException, status
from sqlalchemy.orm import Session

from billflow.application.errors import NotFoundError
from billflow.application.notifications import NotificationService, SessionNotifier
from billflow.infrastructure.db.session import get_db as _get_db


# Re-export get_db for convenience
get_db = _get_db


def get_notifier(db: Session = Depends(get_db)) -> NotificationService:
    return NotificationService(db)


def get_background_notifier() -> SessionNotifier:
    """Notifier handed to the engine; sends run off the request thread."""
    return SessionNotifier()


@contextmanager
def http_errors():
    """
    Translate use case errors into HTTP responses.

    NotFoundError -> 404, ValueError (validation, state errors) -> 400.

    Usage:
        with http_errors():
            UpdateSubscriptionUseCase(db).execute(...)
    """
    try:
        yield
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
