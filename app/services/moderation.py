"""
Moderation combinator.

Every detector runs (no short-circuit) and yields a Finding. The verdict is
a left fold over the findings in DETECTOR order:
  - should_block / should_flag OR together
  - flagged words concatenate, first occurrence wins
  - reasons join with "; " - the first reason uses its standalone wording,
    later ones their short "appended" wording

Resulting status: block or flag => PENDING (held for review), else APPROVED.
Nothing here ever rejects a comment.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from app.models.comment import CommentStatus
from app.services import patterns
from app.services.lexicon import LexiconMatcher, get_matcher


@dataclass(frozen=True)
class Finding:
    reason: str          # wording when this is the first reason
    appended: str        # wording when appended after an earlier reason
    block: bool = False
    flag: bool = False
    words: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ModerationVerdict:
    is_clean: bool = True
    flagged_words: Tuple[str, ...] = ()
    moderation_reason: Optional[str] = None
    should_block: bool = False
    should_flag: bool = False

    @property
    def status(self) -> CommentStatus:
        if self.should_block or self.should_flag:
            return CommentStatus.PENDING
        return CommentStatus.APPROVED

    def merge(self, finding: Finding) -> "ModerationVerdict":
        words = self.flagged_words + tuple(w for w in finding.words if w not in self.flagged_words)
        reason = f"{self.moderation_reason}; {finding.appended}" if self.moderation_reason else finding.reason
        return ModerationVerdict(
            is_clean=False,
            flagged_words=words,
            moderation_reason=reason,
            should_block=self.should_block or finding.block,
            should_flag=self.should_flag or finding.flag,
        )


Detector = Callable[[LexiconMatcher, str, Optional[str]], Optional[Finding]]


def _profane_content(matcher, content, name):
    words = matcher.get_profane_words(content)
    if not words:
        return None
    text = f"Profanity detected: {', '.join(words)}"
    return Finding(reason=text, appended=text, block=True, words=tuple(words))


def _profane_name(matcher, content, name):
    words = matcher.get_profane_words(name)
    if not words:
        return None
    return Finding(reason="Inappropriate name detected", appended="Inappropriate name",
                   block=True, words=tuple(words))


def _spam(matcher, content, name):
    if not patterns.is_spam(content):
        return None
    return Finding(reason="Spam content detected", appended="Spam detected", flag=True)


def _shouting(matcher, content, name):
    if not patterns.is_excessive_caps(content):
        return None
    return Finding(reason="Excessive use of capital letters", appended="Excessive caps", flag=True)


# Order fixes both precedence of reason text and flagged-word order
DETECTORS: List[Detector] = [_profane_content, _profane_name, _spam, _shouting]


def moderate_comment(content, name=None, matcher: Optional[LexiconMatcher] = None) -> ModerationVerdict:
    """Pure: identical (content, name, lexicon) always gives an identical verdict."""
    matcher = matcher or get_matcher()
    verdict = ModerationVerdict()
    for detector in DETECTORS:
        finding = detector(matcher, content, name)
        if finding is not None:
            verdict = verdict.merge(finding)
    return verdict
