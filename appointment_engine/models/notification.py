from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Boolean, JSON
from sqlalchemy.sql import func

from ..core.database import Base

class Notification(Base):
    """Outbox row for an event handed to the notification dispatcher."""
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    recipient_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    type = Column(String(20), nullable=False, default="appointment")
    title = Column(String(100), nullable=False)
    message = Column(String(500), nullable=False)
    data = Column(JSON, nullable=False, default=dict)
    is_read = Column(Boolean, default=False)
    delivered_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    def __repr__(self):
        return f"<Notification(id={self.id}, recipient_id={self.recipient_id}, title='{self.title}')>"
