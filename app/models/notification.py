from sqlalchemy import Column, Integer, String, Text, DateTime, Boolean, JSON, Index
from app.database import Base
from app.models.comment import utcnow

RECIPIENT_USER = "user"
RECIPIENT_ROLE = "role"
RECIPIENT_BROADCAST = "broadcast"


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    recipient_type = Column(String(20), nullable=False)   # user / role / broadcast
    recipient_id = Column(String(255))                   # email, role name, or NULL for broadcast
    type = Column(String(50), nullable=False)            # COMMENT_FLAGGED, COMMENT_POSTED, ...
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    data = Column(JSON, nullable=False, default=dict)
    is_read = Column(Boolean, nullable=False, default=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)

    __table_args__ = (Index("ix_notifications_recipient", "recipient_type", "recipient_id"),)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "data": self.data or {},
            "is_read": bool(self.is_read),
            "recipient_type": self.recipient_type,
            "recipient_id": self.recipient_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
