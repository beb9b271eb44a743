from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from pydantic import BaseModel
from typing import List, Optional

from app.database import get_db
from app.dependencies import get_optional_principal, require_moderator
from app.services.comments import (
    CommentSubmission,
    submit_comment,
    list_public_comments,
    list_for_moderation,
    approve_comment,
    reject_comment,
    delete_comment,
)
from app.services.notifications import NotificationDispatcher, Principal, get_dispatcher

router = APIRouter(prefix="/api/comments", tags=["comments"])


class CommentCreate(BaseModel):
    article_id: Optional[int] = None
    content: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None


class SubmitResponse(BaseModel):
    id: int
    status: str
    is_approved: bool
    moderation_reason: Optional[str] = None
    message: str


class PublicComment(BaseModel):
    id: int
    article_id: int
    author_name: Optional[str] = None
    content: str
    created_at: str


class PublicCommentPage(BaseModel):
    items: List[PublicComment]
    total: int
    page: int
    limit: int


class RejectRequest(BaseModel):
    reason: Optional[str] = None


def serialize_public(c) -> dict:
    """Public view: never exposes guest email or moderation data"""
    return {
        "id": c.id,
        "article_id": c.article_id,
        "author_name": c.display_name,
        "content": c.content,
        "created_at": c.created_at.isoformat() if c.created_at else None,
    }


def serialize_moderation(c) -> dict:
    return {
        "id": c.id,
        "article_id": c.article_id,
        "guest_name": c.guest_name,
        "guest_email": c.guest_email,
        "author_id": c.author_id,
        "content": c.content,
        "status": c.status.value,
        "is_approved": c.is_approved,
        "moderation_reason": c.moderation_reason,
        "flagged_words": c.flagged_words or [],
        "created_at": c.created_at.isoformat() if c.created_at else None,
        "updated_at": c.updated_at.isoformat() if c.updated_at else None,
    }


@router.post("/", response_model=SubmitResponse, status_code=status.HTTP_201_CREATED)
def create_comment(
    comment: CommentCreate,
    author: Optional[Principal] = Depends(get_optional_principal),
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Submit a comment. Clean comments go live at once, flagged ones wait for review.

    Signed-in callers comment as themselves; guest name/email are ignored for them.
    """
    if author is not None:
        sub = CommentSubmission(article_id=comment.article_id, content=comment.content, author_id=author.user_id)
    else:
        sub = CommentSubmission(article_id=comment.article_id, content=comment.content,
                                name=comment.name, email=comment.email)
    result = submit_comment(db, sub, dispatcher)
    return SubmitResponse(
        id=result.comment.id,
        status=result.comment.status.value,
        is_approved=result.is_approved,
        moderation_reason=result.comment.moderation_reason,
        message=result.message,
    )


@router.get("/article/{article_id}", response_model=PublicCommentPage)
def get_article_comments(
    article_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    """Approved comments for an article, newest first"""
    items, total = list_public_comments(db, article_id, page, limit)
    return {"items": [serialize_public(c) for c in items], "total": total, "page": page, "limit": limit}


@router.get("/admin")
def get_moderation_queue(
    status: str = Query("pending", pattern="^(all|pending|approved|rejected)$"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    principal: Principal = Depends(require_moderator),
    db: Session = Depends(get_db),
):
    """Comments for moderation - staff only"""
    items, total = list_for_moderation(db, status, page, limit)
    return {"items": [serialize_moderation(c) for c in items], "total": total, "page": page, "limit": limit}


@router.post("/{comment_id}/approve")
def approve(
    comment_id: int,
    principal: Principal = Depends(require_moderator),
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Approve a comment - staff only"""
    comment = approve_comment(db, comment_id, dispatcher, principal)
    return {"message": "Comment approved", "comment": serialize_moderation(comment)}


@router.post("/{comment_id}/reject")
def reject(
    comment_id: int,
    body: Optional[RejectRequest] = None,
    principal: Principal = Depends(require_moderator),
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Reject a comment - staff only"""
    reason = body.reason if body else None
    comment = reject_comment(db, comment_id, reason, dispatcher, principal)
    return {"message": "Comment rejected", "comment": serialize_moderation(comment)}


@router.delete("/{comment_id}")
def delete(
    comment_id: int,
    principal: Principal = Depends(require_moderator),
    db: Session = Depends(get_db),
):
    """Delete a comment - staff only"""
    delete_comment(db, comment_id, principal)
    return {"message": "Comment deleted successfully"}
