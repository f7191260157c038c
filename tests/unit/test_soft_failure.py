"""Unit tests for soft-failure detection."""

import pytest

from revops_ai.config.loader import SoftFailureConfig
from revops_ai.llm.soft_failure import (
    DEFAULT_PHRASES_VERSION,
    DEFAULT_SOFT_FAILURE_PHRASES,
    SoftFailureClassifier,
    SoftFailurePhrases,
    detect_soft_failure,
    is_soft_failure,
)


class TestClassifier:

    @pytest.mark.parametrize("phrase", DEFAULT_SOFT_FAILURE_PHRASES)
    def test_every_phrase_detected_case_insensitively(self, phrase):
        text = f"Sorry! {phrase.upper()}. Nothing else to say."
        result = detect_soft_failure(text)
        assert result.is_failure
        assert result.pattern == phrase

    @pytest.mark.parametrize("text", [None, ""])
    def test_empty_is_not_a_failure(self, text):
        assert not is_soft_failure(text)

    def test_normal_answer_passes(self):
        assert not is_soft_failure("Focus on the Acme renewal first; it closes Friday.")

    def test_phrase_beyond_scan_limit_is_ignored(self):
        text = "x" * 600 + " quota exceeded"
        assert not SoftFailureClassifier(scan_limit=500).is_soft_failure(text)

    def test_unlimited_scan_sees_whole_body(self):
        text = "x" * 600 + " quota exceeded"
        assert SoftFailureClassifier(scan_limit=None).is_soft_failure(text)

    def test_phrase_straddling_limit_is_ignored(self):
        text = "x" * 495 + "quota exceeded"
        assert not SoftFailureClassifier(scan_limit=500).is_soft_failure(text)

    def test_custom_phrase_list(self):
        phrases = SoftFailurePhrases.from_iterable(["  Out Of Tokens ", "out of tokens", ""], version="v2")
        classifier = SoftFailureClassifier(phrases=phrases)
        assert phrases.phrases == ("out of tokens",)
        assert classifier.version == "v2"
        assert classifier.is_soft_failure("Error: out of tokens")
        assert not classifier.is_soft_failure("quota exceeded")

    def test_from_config_defaults(self):
        classifier = SoftFailureClassifier.from_config(SoftFailureConfig())
        assert classifier.version == DEFAULT_PHRASES_VERSION
        assert classifier.scan_limit == 500

    def test_from_config_phrases(self):
        config = SoftFailureConfig(version="2026.01", phrases=["Try Again Soon"], scan_limit=None)
        classifier = SoftFailureClassifier.from_config(config)
        assert classifier.version == "2026.01"
        assert classifier.is_soft_failure("please try again soon")


class TestStreamingDetector:

    def test_phrase_split_across_chunks(self):
        detector = SoftFailureClassifier().stream_detector()
        assert not detector.feed("Please check your ").is_failure
        result = detector.feed("API key and retry")
        assert result.is_failure
        assert result.pattern == "check your api key"

    def test_result_sticks_after_failure(self):
        detector = SoftFailureClassifier().stream_detector()
        detector.feed("quota exceeded")
        assert detector.feed("more text").is_failure
        assert detector.finish().is_failure

    def test_json_error_envelope(self):
        detector = SoftFailureClassifier().stream_detector()
        result = detector.feed('{"error": {"message": "model overloaded", "type": "overloaded"}}')
        assert result.is_failure
        assert result.reason == "error_envelope"
        assert result.pattern == "model overloaded"

    def test_json_without_error_passes(self):
        detector = SoftFailureClassifier().stream_detector()
        assert not detector.feed('{"answer": 42}').is_failure

    def test_chunks_after_window_are_not_rescanned(self):
        detector = SoftFailureClassifier(scan_limit=10).stream_detector()
        assert not detector.feed("a" * 12).is_failure
        assert not detector.feed(" quota exceeded").is_failure
        assert not detector.finish().is_failure
        assert detector.text.endswith("quota exceeded")
