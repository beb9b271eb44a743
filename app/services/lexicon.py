"""
Lexicon matcher - literal block-list scan of comment text.

The block-list is loaded once into an immutable Lexicon and injected into
LexiconMatcher, so tests (and other deployments) can swap in their own word
list without touching module state.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from app import config

logger = logging.getLogger(__name__)

DEFAULT_LEXICON_FILE = Path(__file__).resolve().parent.parent / "data" / "lexicon.txt"


def _word_pattern(word: str) -> re.Pattern:
    # Lookarounds instead of \b so tokens ending in "*" (e.g. "bull****") still anchor
    return re.compile(rf"(?<!\w){re.escape(word)}(?!\w)", re.IGNORECASE)


@dataclass(frozen=True)
class Lexicon:
    words: Tuple[str, ...]
    _patterns: Tuple[re.Pattern, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "_patterns", tuple(_word_pattern(w) for w in self.words))

    @classmethod
    def from_words(cls, words: Iterable[str]) -> "Lexicon":
        """Normalise to lower case, drop blanks and repeats, keep first position."""
        seen = []
        for w in words:
            w = (w or "").strip().lower()
            if w and w not in seen:
                seen.append(w)
        return cls(tuple(seen))

    @classmethod
    def from_file(cls, path, extra: Iterable[str] = ()) -> "Lexicon":
        lines = Path(path).read_text(encoding="utf-8").splitlines()
        words = [ln for ln in (l.strip() for l in lines) if ln and not ln.startswith("#")]
        return cls.from_words(list(words) + list(extra))

    def patterns(self) -> Iterable[Tuple[str, re.Pattern]]:
        return zip(self.words, self._patterns)

    def __len__(self) -> int:
        return len(self.words)


class LexiconMatcher:
    """Whole-word, case-insensitive matching against a Lexicon. Never raises."""

    def __init__(self, lexicon: Lexicon):
        self.lexicon = lexicon

    def contains_profanity(self, text) -> bool:
        if not text or not isinstance(text, str):
            return False
        return any(p.search(text) for _, p in self.lexicon.patterns())

    def get_profane_words(self, text) -> List[str]:
        """Matched lexicon entries in configuration order (not position order)."""
        if not text or not isinstance(text, str):
            return []
        return [w for w, p in self.lexicon.patterns() if p.search(text)]

    def clean(self, text):
        """Mask every whole-word match with asterisks of the same length."""
        if not text or not isinstance(text, str):
            return text
        cleaned = text
        for _, pattern in self.lexicon.patterns():
            cleaned = pattern.sub(lambda m: "*" * len(m.group(0)), cleaned)
        return cleaned


@lru_cache(maxsize=1)
def load_lexicon(path: Optional[str] = None) -> Lexicon:
    source = path or config.LEXICON_PATH or DEFAULT_LEXICON_FILE
    lexicon = Lexicon.from_file(source, extra=config.LEXICON_EXTRA_WORDS)
    logger.info("Loaded lexicon with %d entries from %s", len(lexicon), source)
    return lexicon


def get_matcher() -> LexiconMatcher:
    return LexiconMatcher(load_lexicon())
