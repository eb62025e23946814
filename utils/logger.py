"""
Database logging for tracking, assignment and booking events
"""
from sqlalchemy.orm import Session
from models.log import SystemLog, ErrorLog, UserActivityLog, LogLevel, LogCategory
from database import SessionLocal
from typing import Optional, Dict, Any
import json
import logging

logger = logging.getLogger(__name__)

class DatabaseLogger:
    """Centralized database logger. A failed log write never fails the caller."""

    session_factory = SessionLocal

    @classmethod
    def _open(cls, db: Optional[Session]):
        if db is not None:
            return db, False
        if cls.session_factory is None:
            return None, False
        return cls.session_factory(), True

    @classmethod
    def log_system(
        cls,
        level: LogLevel,
        category: LogCategory,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None,
        db: Optional[Session] = None
    ):
        db, should_close = cls._open(db)
        if db is None:
            return
        try:
            db.add(SystemLog(
                level=level,
                category=category,
                message=message,
                details=json.dumps(details, default=str) if details else None,
                user_id=user_id
            ))
            db.commit()
        except Exception as e:
            logger.warning(f"Failed to write system log: {e}")
            db.rollback()
        finally:
            if should_close:
                db.close()

    @classmethod
    def log_error(
        cls,
        error_type: str,
        error_message: str,
        context: Optional[str] = None,
        user_id: Optional[str] = None,
        severity: LogLevel = LogLevel.ERROR,
        db: Optional[Session] = None
    ):
        db, should_close = cls._open(db)
        if db is None:
            return
        try:
            db.add(ErrorLog(
                error_type=error_type,
                error_message=error_message,
                context=context,
                user_id=user_id,
                severity=severity
            ))
            db.commit()
        except Exception as e:
            logger.warning(f"Failed to write error log: {e}")
            db.rollback()
        finally:
            if should_close:
                db.close()

    @classmethod
    def log_user_activity(
        cls,
        user_id: str,
        action: str,
        description: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        db: Optional[Session] = None
    ):
        db, should_close = cls._open(db)
        if db is None:
            return
        try:
            db.add(UserActivityLog(
                user_id=user_id,
                action=action,
                description=description,
                entity_type=entity_type,
                entity_id=entity_id
            ))
            db.commit()
        except Exception as e:
            logger.warning(f"Failed to write user activity log: {e}")
            db.rollback()
        finally:
            if should_close:
                db.close()
