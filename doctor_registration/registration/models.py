from sqlalchemy import Column, Integer, String, Text, DateTime
from sqlalchemy.sql import func

from ..database import Base

class RegistrationDraftRecord(Base):
    __tablename__ = "registration_drafts"

    id = Column(Integer, primary_key=True, index=True)
    storage_key = Column(String, unique=True, index=True, nullable=False)
    session_id = Column(String, nullable=True, index=True)
    payload = Column(Text, nullable=False)  # JSON snapshot {data, progress, timestamp, sessionId}
    saved_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<RegistrationDraftRecord(id={self.id}, storage_key='{self.storage_key}', saved_at='{self.saved_at}')>"
