import enum
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, JSON, Enum, CheckConstraint
from sqlalchemy.orm import relationship
from app.database import Base


def utcnow():
    return datetime.now(timezone.utc)


class CommentStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class Comment(Base):
    __tablename__ = "comments"

    id = Column(Integer, primary_key=True, index=True)
    article_id = Column(Integer, ForeignKey("articles.id"), nullable=False, index=True)
    content = Column(Text, nullable=False)

    # Guest submitter (name + email) OR an authenticated author - never both
    guest_name = Column(String(100))
    guest_email = Column(String(255))
    author_id = Column(String(255), index=True)

    status = Column(Enum(CommentStatus, native_enum=False, length=20), nullable=False,
                    default=CommentStatus.PENDING, index=True)
    moderation_reason = Column(Text)
    flagged_words = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), onupdate=utcnow)

    __table_args__ = (
        CheckConstraint(
            "(author_id IS NULL) OR (guest_name IS NULL AND guest_email IS NULL)",
            name="ck_comment_single_submitter",
        ),
    )

    # Relationship
    article = relationship("Article", backref="comments")

    @property
    def is_approved(self) -> bool:
        return self.status == CommentStatus.APPROVED

    @property
    def display_name(self):
        return self.guest_name or self.author_id
