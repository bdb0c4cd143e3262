"""
Tests for the text moderation filter and the image safety policy.
"""

from unittest.mock import AsyncMock

import pytest

from fanout.errors import ConfigurationError, ExternalServiceError
from fanout.services.collaborators import ClassifierResult
from fanout.services.moderation import (
    ImageSafetyPolicy,
    ImageStatus,
    Likelihood,
    ModerationFilter,
    ModerationReason,
    moderate,
    moderate_entity,
)
from fanout.services.store import MemoryTreeStore


class TestModerationFilter:
    def setup_method(self):
        self.filter = ModerationFilter(blocklist=["darn", "heck"])

    def test_shouting_is_lowered(self):
        verdict = self.filter.moderate("HELLO WORLD")
        assert verdict.text == "hello world"
        assert verdict.was_modified
        assert verdict.reasons == (ModerationReason.CASE_NORMALIZATION,)

    def test_blocked_word_is_masked(self):
        verdict = self.filter.moderate("well darn it")
        assert verdict.text == "well **** it"
        assert verdict.reasons == (ModerationReason.PROFANITY,)

    def test_blocked_words_match_any_case_but_whole_words_only(self):
        assert self.filter.moderate("Darn, DARN.").text == "****, ****."
        assert self.filter.moderate("darned heckle").text == "darned heckle"

    def test_clean_text_untouched(self):
        verdict = self.filter.moderate("Nice photo of my Cat")
        assert verdict.text == "Nice photo of my Cat"
        assert not verdict.was_modified
        assert verdict.reasons == ()

    @pytest.mark.parametrize("text", [
        "HELLO WORLD",
        "DARN THIS heck",
        "darn IT ALL",
        "OK darn",
        "",
        "1234 !!!",
        "Mostly Fine DARN DARN DARN",
    ])
    def test_idempotent(self, text):
        once = self.filter.moderate(text).text
        twice = self.filter.moderate(once)
        assert twice.text == once
        assert twice.was_modified is False

    def test_shout_ratio_ignores_blocked_words(self):
        assert not self.filter.is_shouting("ok DARN")
        assert self.filter.is_shouting("OK darn")

    def test_empty_and_none(self):
        assert self.filter.moderate("").text == ""
        assert self.filter.moderate(None).text == ""

    def test_bad_configuration(self):
        with pytest.raises(ConfigurationError):
            ModerationFilter(shout_ratio=1.5)
        with pytest.raises(ConfigurationError):
            ModerationFilter(mask="xxx")

    def test_default_filter(self):
        assert moderate("what the shit").text == "what the ****"


class TestModerateEntity:
    def setup_method(self):
        self.store = MemoryTreeStore({
            "posts": {"p1": {"text": "LOOK AT THIS", "author": {"uid": "u1"}}},
            "comments": {"p1": {"c1": {"text": "fine", "author": {"uid": "u2"}}}},
        })
        self.filter = ModerationFilter(blocklist=["darn"])

    @pytest.mark.asyncio
    async def test_moderates_and_marks(self):
        verdict = await moderate_entity(self.store, "posts/p1", self.filter)
        assert verdict.was_modified
        post = await self.store.read("posts/p1")
        assert post["text"] == "look at this"
        assert post["sanitized"] is True
        assert post["moderated"] is True

    @pytest.mark.asyncio
    async def test_unchanged_text_is_marked_clean(self):
        await moderate_entity(self.store, "comments/p1/c1", self.filter)
        comment = await self.store.read("comments/p1/c1")
        assert comment["sanitized"] is True
        assert comment["moderated"] is False

    @pytest.mark.asyncio
    async def test_sanitized_records_are_skipped(self):
        await moderate_entity(self.store, "posts/p1", self.filter)
        assert await moderate_entity(self.store, "posts/p1", self.filter) is None

    @pytest.mark.asyncio
    async def test_missing_record(self):
        assert await moderate_entity(self.store, "posts/nope", self.filter) is None

    @pytest.mark.asyncio
    async def test_non_string_text_is_rejected(self):
        await self.store.write("posts/p2", {"text": 42, "author": {"uid": "u1"}})
        with pytest.raises(ConfigurationError):
            await moderate_entity(self.store, "posts/p2", self.filter)
        assert await self.store.read("posts/p2/sanitized") is None


class TestImageSafetyPolicy:
    def setup_method(self):
        self.policy = ImageSafetyPolicy()

    def test_likely_adult_is_flagged(self):
        verdict = self.policy.evaluate("img", ClassifierResult(adult="LIKELY", violence="VERY_UNLIKELY"))
        assert verdict.flagged
        assert verdict.reasons == (ModerationReason.ADULT,)

    def test_unlikely_is_safe(self):
        verdict = self.policy.evaluate("img", ClassifierResult(adult=Likelihood.UNLIKELY, violence=2))
        assert not verdict.flagged
        assert verdict.status is ImageStatus.SAFE

    def test_violence_alone_flags(self):
        verdict = self.policy.evaluate("img", ClassifierResult(adult=None, violence="very_likely"))
        assert verdict.reasons == (ModerationReason.VIOLENCE,)

    def test_unknown_likelihood_name(self):
        with pytest.raises(ValueError):
            Likelihood.parse("SOMEWHAT")

    @pytest.mark.asyncio
    async def test_check_calls_classifier(self):
        classifier = AsyncMock()
        classifier.classify.return_value = ClassifierResult(adult="POSSIBLE", violence="LIKELY")
        verdict = await self.policy.check(classifier, "u1/full/p1/a.jpg")
        classifier.classify.assert_awaited_once_with("u1/full/p1/a.jpg")
        assert verdict.flagged

    @pytest.mark.asyncio
    async def test_classifier_failure_raises(self):
        classifier = AsyncMock()
        classifier.classify.side_effect = TimeoutError("vision api timeout")
        with pytest.raises(ExternalServiceError):
            await self.policy.check(classifier, "img")

    @pytest.mark.asyncio
    async def test_classifier_failure_fail_open(self):
        classifier = AsyncMock()
        classifier.classify.side_effect = TimeoutError("vision api timeout")
        verdict = await self.policy.check(classifier, "img", fail_open=True)
        assert verdict.status is ImageStatus.UNVERIFIED
        assert not verdict.flagged
