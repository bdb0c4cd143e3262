# fanout/services/moderation.py
"""Text moderation filter and image safety policy."""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Iterable, Optional, Tuple

from fanout.config import BLOCKLIST, MODERATION_MASK, SHOUT_RATIO
from fanout.errors import ConfigurationError, ExternalServiceError
from fanout.services.collaborators import ClassifierResult, ImageClassifier
from fanout.services.store import TreeStore

log = logging.getLogger(__name__)


class ModerationReason(str, Enum):
    CASE_NORMALIZATION = "case_normalization"
    PROFANITY = "profanity_substitution"
    ADULT = "adult"
    VIOLENCE = "violence"


@dataclass(frozen=True)
class ModerationVerdict:
    """Result of filtering one piece of text."""
    text: str
    was_modified: bool
    reasons: Tuple[ModerationReason, ...] = ()


class ModerationFilter:
    """
    Deterministic text filter.

    Steps, in order:
      1. Shouting: when more than ``shout_ratio`` of the letters outside
         blocked words are upper case, the whole text is lower-cased.
      2. Profanity: blocked words (whole words, any case) become ``mask``.

    Blocked words are left out of the shouting ratio so that masking them
    cannot change the ratio on a second pass; ``moderate`` is idempotent.
    """

    def __init__(self, blocklist: Iterable[str] = BLOCKLIST, mask: str = MODERATION_MASK,
                 shout_ratio: float = SHOUT_RATIO):
        words = sorted({w.strip().lower() for w in blocklist if w and w.strip()}, key=len, reverse=True)
        if not 0 <= shout_ratio < 1:
            raise ConfigurationError(f"shout_ratio must be in [0, 1), got {shout_ratio}")
        if any(ch.isalpha() for ch in mask):
            raise ConfigurationError("The moderation mask must not contain letters")
        self.blocklist = tuple(words)
        self.mask = mask
        self.shout_ratio = shout_ratio
        self._pattern = (
            re.compile(r"(?<!\w)(?:" + "|".join(re.escape(w) for w in words) + r")(?!\w)", re.IGNORECASE)
            if words else None
        )

    def is_shouting(self, text: str) -> bool:
        clean = self._pattern.sub(" ", text) if self._pattern else text
        letters = [ch for ch in clean if ch.isalpha()]
        if not letters:
            return False
        upper = sum(1 for ch in letters if ch.isupper())
        return upper / len(letters) > self.shout_ratio

    def moderate(self, text: str) -> ModerationVerdict:
        """
        Filter a piece of user text.

        Args:
            text: Raw text

        Returns:
            ModerationVerdict with the filtered text and the reasons it changed
        """
        if text is None:
            text = ""
        reasons = []
        result = text

        if self.is_shouting(result):
            lowered = result.lower()
            if lowered != result:
                result = lowered
                reasons.append(ModerationReason.CASE_NORMALIZATION)

        if self._pattern is not None:
            masked = self._pattern.sub(self.mask, result)
            if masked != result:
                result = masked
                reasons.append(ModerationReason.PROFANITY)

        return ModerationVerdict(text=result, was_modified=result != text, reasons=tuple(reasons))


default_filter = ModerationFilter()


def moderate(text: str) -> ModerationVerdict:
    """Convenience function using the configured block-list."""
    return default_filter.moderate(text)


async def moderate_entity(store: TreeStore, path: str,
                          moderation_filter: Optional[ModerationFilter] = None) -> Optional[ModerationVerdict]:
    """
    Moderate the ``text`` of a stored post or comment in place.

    Records already marked ``sanitized`` are skipped, so the write-back
    does not trigger another round.

    Returns:
        The verdict, or None when nothing was done

    Raises:
        ConfigurationError: the record has a non-string ``text``
    """
    moderation_filter = moderation_filter or default_filter
    record = await store.read(path)
    if not isinstance(record, dict) or record.get("sanitized"):
        return None

    text = record.get("text")
    if text is not None and not isinstance(text, str):
        raise ConfigurationError(f"{path}/text must be a string, got {type(text).__name__}")
    verdict = moderation_filter.moderate(text or "")
    log.info("Moderated %s (modified=%s)", path, verdict.was_modified)
    await store.update({
        f"{path}/text": verdict.text or None,
        f"{path}/sanitized": True,
        f"{path}/moderated": verdict.was_modified,
    })
    return verdict


class Likelihood(IntEnum):
    UNKNOWN = 0
    VERY_UNLIKELY = 1
    UNLIKELY = 2
    POSSIBLE = 3
    LIKELY = 4
    VERY_LIKELY = 5

    @classmethod
    def parse(cls, value: Any) -> "Likelihood":
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls[value.strip().upper()]
            except KeyError:
                raise ValueError(f"Unknown likelihood {value!r}")
        if value is None:
            return cls.UNKNOWN
        return cls(int(value))


class ImageStatus(str, Enum):
    SAFE = "verified_safe"
    FLAGGED = "flagged"
    UNVERIFIED = "could_not_verify"


@dataclass(frozen=True)
class ImageVerdict:
    image_ref: str
    status: ImageStatus
    adult: Likelihood = Likelihood.UNKNOWN
    violence: Likelihood = Likelihood.UNKNOWN
    reasons: Tuple[ModerationReason, ...] = field(default_factory=tuple)

    @property
    def flagged(self) -> bool:
        return self.status is ImageStatus.FLAGGED


class ImageSafetyPolicy:
    """Blur when either category reaches ``threshold``."""

    def __init__(self, threshold: Likelihood = Likelihood.LIKELY):
        self.threshold = Likelihood.parse(threshold)

    def evaluate(self, image_ref: str, result: ClassifierResult) -> ImageVerdict:
        adult = Likelihood.parse(result.adult)
        violence = Likelihood.parse(result.violence)
        reasons = []
        if adult >= self.threshold:
            reasons.append(ModerationReason.ADULT)
        if violence >= self.threshold:
            reasons.append(ModerationReason.VIOLENCE)
        status = ImageStatus.FLAGGED if reasons else ImageStatus.SAFE
        return ImageVerdict(image_ref, status, adult, violence, tuple(reasons))

    async def check(self, classifier: ImageClassifier, image_ref: str, fail_open: bool = False) -> ImageVerdict:
        """
        Classify an image and apply the policy.

        Args:
            classifier: Image classifier collaborator
            image_ref: Object reference handed to the classifier
            fail_open: When True a classifier failure yields an UNVERIFIED,
                unflagged verdict instead of raising

        Raises:
            ExternalServiceError: the classifier failed and ``fail_open`` is False
        """
        try:
            result = await classifier.classify(image_ref)
        except Exception as exc:
            if fail_open:
                log.warning("Could not verify %s (failing open): %s", image_ref, exc)
                return ImageVerdict(image_ref, ImageStatus.UNVERIFIED)
            log.error("Could not verify %s: %s", image_ref, exc)
            raise ExternalServiceError("classifier", f"Could not verify {image_ref}", exc) from exc

        verdict = self.evaluate(image_ref, result)
        if verdict.flagged:
            log.info("Image %s flagged: %s", image_ref, ", ".join(r.value for r in verdict.reasons))
        else:
            log.info("Image %s verified safe", image_ref)
        return verdict
