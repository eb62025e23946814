from sqlalchemy import Column, Integer, String, DateTime, Text, Enum as SQLEnum
from datetime import datetime
from database import Base
import enum

class LogLevel(str, enum.Enum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

class LogCategory(str, enum.Enum):
    AUTHENTICATION = "authentication"
    LOCATION_UPDATE = "location_update"
    ASSIGNMENT = "assignment"
    BOOKING = "booking"
    CONSISTENCY = "consistency"
    SYSTEM = "system"

class SystemLog(Base):
    """General system logs for application events"""
    __tablename__ = "system_logs"

    id = Column(Integer, primary_key=True, index=True)
    level = Column(SQLEnum(LogLevel), nullable=False, index=True)
    category = Column(SQLEnum(LogCategory), nullable=False, index=True)
    message = Column(Text, nullable=False)
    details = Column(Text, nullable=True)  # JSON string for additional data
    user_id = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

class ErrorLog(Base):
    """Error and exception logs"""
    __tablename__ = "error_logs"

    id = Column(Integer, primary_key=True, index=True)
    error_type = Column(String(200), nullable=False, index=True)
    error_message = Column(Text, nullable=False)
    context = Column(String(500), nullable=True)  # operation or endpoint
    user_id = Column(String(64), nullable=True)
    severity = Column(SQLEnum(LogLevel), default=LogLevel.ERROR, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

class UserActivityLog(Base):
    """User activity logs: assignments, booking transitions, location sharing"""
    __tablename__ = "user_activity_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    action = Column(String(200), nullable=False, index=True)
    description = Column(Text, nullable=True)
    entity_type = Column(String(100), nullable=True)  # vehicle, booking, vehicleLocation
    entity_id = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
