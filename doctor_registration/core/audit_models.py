from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func

from ..database import Base

class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(String, nullable=True, index=True)
    category = Column(String, nullable=False, index=True)
    message = Column(String, nullable=False)
    context = Column(JSON, nullable=True)  # masked event context
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, session_id='{self.session_id}', category='{self.category}', timestamp='{self.timestamp}')>"
