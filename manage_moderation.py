"""
🛡️ MODERATION HELPER
Quick script to try the moderation rules and look at the review queue.

Usage:
    python manage_moderation.py --check "comment text" [--name "Display Name"]
    python manage_moderation.py --add-article "Council passes budget" council-passes-budget
    python manage_moderation.py --pending
    python manage_moderation.py --stats
"""

import sys
import os

# Add the app directory to the path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from app.database import SessionLocal, Base, engine
from app.models.article import Article
from app.models.comment import Comment, CommentStatus
from app.models import notification  # noqa: F401
from app.services.lexicon import get_matcher
from app.services.moderation import moderate_comment


def check_text(content, name=None):
    """Show the verdict a submission would get"""
    verdict = moderate_comment(content, name)
    matcher = get_matcher()

    print(f"\n🔎 VERDICT\n")
    print(f"Status:          {'🟢 APPROVED' if verdict.status == CommentStatus.APPROVED else '🟡 PENDING'}")
    print(f"Clean:           {verdict.is_clean}")
    print(f"Block:           {verdict.should_block}")
    print(f"Flag:            {verdict.should_flag}")
    print(f"Flagged words:   {', '.join(verdict.flagged_words) or '-'}")
    print(f"Reason:          {verdict.moderation_reason or '-'}")
    print(f"Masked:          {matcher.clean(content)}")
    print()
    return verdict


def add_article(title, slug):
    """Register an article so comments can reference it"""
    db = SessionLocal()

    try:
        existing = db.query(Article).filter(Article.slug == slug).first()
        if existing:
            print(f"❌ Article '{slug}' already exists (id {existing.id})!")
            return False

        article = Article(title=title, slug=slug, comment_count=0)
        db.add(article)
        db.commit()

        print(f"✅ Article created with id {article.id}")
        return True
    finally:
        db.close()


def list_pending():
    """List comments waiting for review"""
    db = SessionLocal()

    try:
        comments = (db.query(Comment)
                    .filter(Comment.status == CommentStatus.PENDING)
                    .order_by(Comment.created_at.asc())
                    .all())

        if not comments:
            print("No comments waiting for review.")
            return

        print("\n📋 PENDING COMMENTS:\n")
        print(f"{'ID':<8} {'Article':<10} {'Who':<25} {'Reason':<50}")
        print("-" * 93)

        for c in comments:
            who = (c.display_name or "?")[:24]
            reason = (c.moderation_reason or "")[:49]
            print(f"{c.id:<8} {c.article_id:<10} {who:<25} {reason:<50}")

        print()
    finally:
        db.close()


def show_stats():
    """Comment counts per status"""
    db = SessionLocal()

    try:
        print(f"\n📊 COMMENT STATS\n")
        for status in CommentStatus:
            count = db.query(Comment).filter(Comment.status == status).count()
            print(f"{status.value:<15} {count}")
        print()
    finally:
        db.close()


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(1)

    Base.metadata.create_all(bind=engine)
    command = sys.argv[1]

    if command == "--check":
        if len(sys.argv) < 3:
            print('Usage: python manage_moderation.py --check "text" [--name "Display Name"]')
            sys.exit(1)

        name = None
        if len(sys.argv) >= 5 and sys.argv[3] == "--name":
            name = sys.argv[4]
        check_text(sys.argv[2], name)

    elif command == "--add-article":
        if len(sys.argv) < 4:
            print('Usage: python manage_moderation.py --add-article "Title" slug')
            sys.exit(1)
        add_article(sys.argv[2], sys.argv[3])

    elif command == "--pending":
        list_pending()

    elif command == "--stats":
        show_stats()

    else:
        print(f"Unknown command: {command}")
        print(__doc__)
        sys.exit(1)
