import os
from dotenv import load_dotenv

load_dotenv()

ENV = os.getenv("ENV", "dev")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./newsroom.db")

# Google Sign-In audience for staff / reader ID tokens
GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID")

# ✅ COMMENT LIMITS
COMMENT_MAX_LENGTH = int(os.getenv("COMMENT_MAX_LENGTH", "5000"))
NAME_MAX_LENGTH = 100

# Block-list file (one word per line). None = bundled app/data/lexicon.txt
LEXICON_PATH = os.getenv("LEXICON_PATH")
LEXICON_EXTRA_WORDS = [
    w.strip() for w in os.getenv("LEXICON_EXTRA_WORDS", "").split(",") if w.strip()
]


def _parse_staff_roles(raw: str) -> dict:
    """STAFF_ROLES="eic@paper.com:EDITOR_IN_CHIEF,desk@paper.com:SECTION_HEAD" """
    roles = {}
    for entry in raw.split(","):
        if ":" not in entry:
            continue
        email, role = entry.split(":", 1)
        if email.strip() and role.strip():
            roles[email.strip().lower()] = role.strip().upper()
    return roles


STAFF_ROLES = _parse_staff_roles(os.getenv("STAFF_ROLES", ""))
DEFAULT_ROLE = "READER"

# Roles allowed to approve / reject / delete comments
MODERATOR_ROLES = {"SECTION_HEAD", "EDITOR_IN_CHIEF", "ADVISER", "SYSTEM_ADMIN"}

# Role that receives "new comment" editorial notifications
COMMENT_REVIEW_ROLE = os.getenv("COMMENT_REVIEW_ROLE", "SECTION_HEAD")

# --- Push channel ---
HEARTBEAT_INTERVAL = float(os.getenv("HEARTBEAT_INTERVAL", "30"))
CHANNEL_QUEUE_SIZE = int(os.getenv("CHANNEL_QUEUE_SIZE", "100"))

NOTIFICATION_LIST_DEFAULT = 50
NOTIFICATION_LIST_MAX = 100
