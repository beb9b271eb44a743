"""Regex heuristics for spam and shouting. Independent of the lexicon."""
import re

SPAM_PATTERNS = (
    re.compile(r"(http|https|www\.)", re.IGNORECASE),                       # URLs
    re.compile(r"(click here|buy now|free money|make money)", re.IGNORECASE),
    re.compile(r"(bit\.ly|tinyurl|short\.link)", re.IGNORECASE),            # URL shorteners
    re.compile(r"(viagra|cialis|pharmacy)", re.IGNORECASE),
)

CAPS_MIN_TOKEN_LENGTH = 3
CAPS_RATIO_THRESHOLD = 0.3


def is_spam(text) -> bool:
    if not text or not isinstance(text, str):
        return False
    return any(p.search(text) for p in SPAM_PATTERNS)


def is_excessive_caps(text) -> bool:
    """More than 30% of whitespace tokens are shouted (len > 2, all caps, has a letter)."""
    if not text or not isinstance(text, str):
        return False
    tokens = text.split()
    if not tokens:
        return False
    shouted = [
        t for t in tokens
        if len(t) >= CAPS_MIN_TOKEN_LENGTH and t == t.upper() and any(c.isalpha() for c in t)
    ]
    return len(shouted) > len(tokens) * CAPS_RATIO_THRESHOLD
