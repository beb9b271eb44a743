"""
Comment lifecycle: validate -> moderate -> persist -> notify.

The comment row, the article's visible count and the editorial
notification row are written in ONE transaction. Frames go out only after
commit, so a failed write never leaves a pushed notification behind.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from email_validator import EmailNotValidError, validate_email
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app import config
from app.errors import NotFoundError, PersistenceError, ValidationError
from app.models.article import Article
from app.models.comment import Comment, CommentStatus
from app.models.notification import RECIPIENT_ROLE, RECIPIENT_USER
from app.services.lexicon import LexiconMatcher, get_matcher
from app.services.moderation import ModerationVerdict, moderate_comment
from app.services.notifications import NotificationDispatcher, NotificationEvent, Principal

logger = logging.getLogger(__name__)

EXCERPT_LENGTH = 140

EVENT_COMMENT_POSTED = "COMMENT_POSTED"
EVENT_COMMENT_FLAGGED = "COMMENT_FLAGGED"
EVENT_COMMENT_STATUS_CHANGED = "COMMENT_STATUS_CHANGED"


@dataclass
class CommentSubmission:
    article_id: Optional[int]
    content: Optional[str]
    name: Optional[str] = None
    author_id: Optional[str] = None
    email: Optional[str] = None


@dataclass
class SubmissionResult:
    comment: Comment
    verdict: ModerationVerdict

    @property
    def is_approved(self) -> bool:
        return self.comment.status == CommentStatus.APPROVED

    @property
    def message(self) -> str:
        if self.is_approved:
            return "Comment posted successfully"
        return "Comment received and held for review"


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def _blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def validate_submission(sub: CommentSubmission) -> List[dict]:
    """Field-level errors; empty list means the submission may be moderated."""
    errors = []

    if sub.article_id is None:
        errors.append({"field": "article_id", "message": "article_id is required"})

    if _blank(sub.content):
        errors.append({"field": "content", "message": "Comment content is required"})
    elif len(sub.content) > config.COMMENT_MAX_LENGTH:
        errors.append({"field": "content",
                       "message": f"Comment is too long (max {config.COMMENT_MAX_LENGTH} characters)"})

    has_author = not _blank(sub.author_id)
    has_guest = not _blank(sub.name) or not _blank(sub.email)

    if has_author and has_guest:
        errors.append({"field": "author_id",
                       "message": "Provide either author_id or guest name/email, not both"})
    elif not has_author:
        if _blank(sub.name):
            errors.append({"field": "name", "message": "Name is required"})
        elif len(sub.name.strip()) > config.NAME_MAX_LENGTH:
            errors.append({"field": "name",
                           "message": f"Name is too long (max {config.NAME_MAX_LENGTH} characters)"})
        if _blank(sub.email):
            errors.append({"field": "email", "message": "Email is required"})
        else:
            try:
                validate_email(sub.email.strip(), check_deliverability=False)
            except EmailNotValidError as e:
                errors.append({"field": "email", "message": f"Email must be valid: {e}"})

    return errors


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

def comment_submitted_event(comment: Comment, article: Article, verdict: ModerationVerdict,
                            matcher: LexiconMatcher) -> NotificationEvent:
    flagged = comment.status != CommentStatus.APPROVED
    who = comment.display_name or "A reader"
    if flagged:
        title = "Comment held for review"
        message = f'{who}\'s comment on "{article.title}" needs review: {verdict.moderation_reason}'
    else:
        title = "New comment posted"
        message = f'{who} commented on "{article.title}"'
    return NotificationEvent(
        type=EVENT_COMMENT_FLAGGED if flagged else EVENT_COMMENT_POSTED,
        title=title,
        message=message,
        recipient_type=RECIPIENT_ROLE,
        recipient_id=config.COMMENT_REVIEW_ROLE,
        data={
            "comment_id": comment.id,
            "article_id": article.id,
            "article_title": article.title,
            "status": comment.status.value,
            "flagged": flagged,
            "moderation_reason": verdict.moderation_reason,
            "flagged_words": list(verdict.flagged_words),
            "excerpt": matcher.clean(comment.content)[:EXCERPT_LENGTH],
        },
    )


def comment_status_event(comment: Comment, old: CommentStatus, new: CommentStatus,
                         reason: Optional[str] = None) -> NotificationEvent:
    if comment.author_id:
        recipient_type, recipient_id = RECIPIENT_USER, comment.author_id
    else:
        recipient_type, recipient_id = RECIPIENT_ROLE, config.COMMENT_REVIEW_ROLE
    title = "Comment approved" if new == CommentStatus.APPROVED else "Comment rejected"
    message = f"Comment #{comment.id} moved from {old.value.lower()} to {new.value.lower()}."
    if reason:
        message += f" Reason: {reason}"
    return NotificationEvent(
        type=EVENT_COMMENT_STATUS_CHANGED,
        title=title,
        message=message,
        recipient_type=recipient_type,
        recipient_id=recipient_id,
        data={
            "comment_id": comment.id,
            "article_id": comment.article_id,
            "old_status": old.value,
            "new_status": new.value,
            "reason": reason,
        },
    )


# ---------------------------------------------------------------------------
# Submission
# ---------------------------------------------------------------------------

def _bump_comment_count(db: Session, article_id: int, delta: int) -> None:
    db.query(Article).filter(Article.id == article_id).update(
        {Article.comment_count: Article.comment_count + delta}, synchronize_session=False
    )


def submit_comment(db: Session, sub: CommentSubmission, dispatcher: NotificationDispatcher,
                   matcher: Optional[LexiconMatcher] = None) -> SubmissionResult:
    errors = validate_submission(sub)
    if errors:
        raise ValidationError(errors)

    article = db.query(Article).filter(Article.id == sub.article_id).first()
    if not article:
        raise NotFoundError("Article", sub.article_id)

    matcher = matcher or get_matcher()
    name = sub.name.strip() if sub.name else None
    verdict = moderate_comment(sub.content, name, matcher=matcher)
    status = verdict.status

    comment = Comment(
        article_id=article.id,
        content=sub.content.strip(),
        guest_name=None if sub.author_id else name,
        guest_email=None if sub.author_id else sub.email.strip(),
        author_id=sub.author_id.strip() if sub.author_id else None,
        status=status,
        moderation_reason=verdict.moderation_reason,
        flagged_words=list(verdict.flagged_words),
    )

    try:
        db.add(comment)
        db.flush()
        if status == CommentStatus.APPROVED:
            _bump_comment_count(db, article.id, +1)
        notification = dispatcher.record(db, comment_submitted_event(comment, article, verdict, matcher))
        db.commit()
        db.refresh(comment)
        db.refresh(notification)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Failed to store comment on article %s: %s", sub.article_id, e)
        raise PersistenceError("Failed to create comment") from e

    logger.info("Comment %s on article %s stored as %s%s", comment.id, article.id, status.value,
                f" ({verdict.moderation_reason})" if verdict.moderation_reason else "")
    dispatcher.deliver(notification)
    return SubmissionResult(comment=comment, verdict=verdict)


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------

def list_public_comments(db: Session, article_id: int, page: int = 1,
                         limit: int = 20) -> Tuple[List[Comment], int]:
    """APPROVED only, newest first."""
    query = db.query(Comment).filter(
        Comment.article_id == article_id,
        Comment.status == CommentStatus.APPROVED,
    )
    total = query.count()
    items = (query.order_by(Comment.created_at.desc(), Comment.id.desc())
             .offset((page - 1) * limit).limit(limit).all())
    return items, total


def list_for_moderation(db: Session, status: Optional[str] = None, page: int = 1,
                        limit: int = 20) -> Tuple[List[Comment], int]:
    query = db.query(Comment)
    if status and status != "all":
        query = query.filter(Comment.status == CommentStatus(status.upper()))
    total = query.count()
    items = (query.order_by(Comment.created_at.desc(), Comment.id.desc())
             .offset((page - 1) * limit).limit(limit).all())
    return items, total


# ---------------------------------------------------------------------------
# Moderator actions
# ---------------------------------------------------------------------------

def _get_comment(db: Session, comment_id: int) -> Comment:
    comment = db.query(Comment).filter(Comment.id == comment_id).first()
    if not comment:
        raise NotFoundError("Comment", comment_id)
    return comment


def _change_status(db: Session, comment: Comment, new: CommentStatus, reason: Optional[str],
                   dispatcher: NotificationDispatcher, actor: Principal) -> Comment:
    old = comment.status
    try:
        comment.status = new
        comment.moderation_reason = reason
        if old != CommentStatus.APPROVED and new == CommentStatus.APPROVED:
            _bump_comment_count(db, comment.article_id, +1)
        elif old == CommentStatus.APPROVED and new != CommentStatus.APPROVED:
            _bump_comment_count(db, comment.article_id, -1)
        notification = dispatcher.record(db, comment_status_event(comment, old, new, reason))
        db.commit()
        db.refresh(comment)
        db.refresh(notification)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Failed to move comment %s to %s: %s", comment.id, new.value, e)
        raise PersistenceError("Failed to update comment") from e

    logger.info("Comment %s: %s -> %s by %s", comment.id, old.value, new.value, actor.user_id)
    dispatcher.deliver(notification)
    return comment


def approve_comment(db: Session, comment_id: int, dispatcher: NotificationDispatcher,
                    actor: Principal) -> Comment:
    comment = _get_comment(db, comment_id)
    if comment.status == CommentStatus.APPROVED:
        return comment
    return _change_status(db, comment, CommentStatus.APPROVED, None, dispatcher, actor)


def reject_comment(db: Session, comment_id: int, reason: Optional[str],
                   dispatcher: NotificationDispatcher, actor: Principal) -> Comment:
    comment = _get_comment(db, comment_id)
    if comment.status == CommentStatus.REJECTED:
        return comment
    return _change_status(db, comment, CommentStatus.REJECTED, reason or "Rejected", dispatcher, actor)


def delete_comment(db: Session, comment_id: int, actor: Principal) -> None:
    comment = _get_comment(db, comment_id)
    try:
        if comment.status == CommentStatus.APPROVED:
            _bump_comment_count(db, comment.article_id, -1)
        db.delete(comment)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Failed to delete comment %s: %s", comment_id, e)
        raise PersistenceError("Failed to delete comment") from e
    logger.info("Comment %s deleted by %s", comment_id, actor.user_id)
