from sqlalchemy import String, Integer, Text, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from database import Base

class StoreNode(Base):
    """One record of the realtime keyed store, addressed by its slash path"""
    __tablename__ = "store_nodes"

    path: Mapped[str] = mapped_column(String(512), primary_key=True)
    # Parent collection path, e.g. "vehicles" for "vehicles/abc"
    parent: Mapped[str] = mapped_column(String(512), index=True, nullable=False)
    value: Mapped[str] = mapped_column(Text, nullable=False)  # JSON document
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<StoreNode(path={self.path}, version={self.version})>"
