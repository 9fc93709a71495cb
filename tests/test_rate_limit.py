import pytest

from chatrouter.errors import EmptyReplyError, ModelTimeoutError, ProviderError
from chatrouter.rate_limit import FailureKind, classify_failure, is_rate_limited


@pytest.mark.parametrize(
    "status, code, message",
    [
        (429, None, None),
        (None, 429, None),
        (None, "429", None),
        (None, " 429 ", None),
        (None, None, "Rate limit exceeded, try later"),
        (None, None, "upstream says: RATE LIMIT reached"),
    ],
)
def test_is_rate_limited_true(status, code, message) -> None:
    assert is_rate_limited(status, code, message) is True


@pytest.mark.parametrize(
    "status, code, message",
    [
        (500, "INTERNAL", "server error"),
        (None, None, None),
        (None, "4290", None),
        (None, True, None),
        (400, "RateLimitReached", "quota exhausted"),
    ],
)
def test_is_rate_limited_false(status, code, message) -> None:
    assert is_rate_limited(status, code, message) is False


def test_classify_timeout_is_transient() -> None:
    kind = classify_failure(ModelTimeoutError("GPT-4.1 did not respond in time"))
    assert kind is FailureKind.TIMEOUT
    assert kind.transient


def test_classify_provider_error_uses_fields() -> None:
    assert classify_failure(ProviderError("slow down", status_code=429)) is FailureKind.RATE_LIMITED
    assert classify_failure(ProviderError("bad", error_code="429")) is FailureKind.RATE_LIMITED
    assert classify_failure(ProviderError("bad request", status_code=400)) is FailureKind.HARD


def test_classify_generic_exception_reads_attributes() -> None:
    class SdkError(Exception):
        def __init__(self) -> None:
            super().__init__("too many requests")
            self.status = 429

    assert classify_failure(SdkError()) is FailureKind.RATE_LIMITED
    assert classify_failure(RuntimeError("Rate limit hit")) is FailureKind.RATE_LIMITED
    assert classify_failure(RuntimeError("boom")) is FailureKind.HARD


def test_classify_empty_reply_is_not_transient() -> None:
    kind = classify_failure(EmptyReplyError("GPT-4.1 returned an empty response"))
    assert kind is FailureKind.EMPTY_REPLY
    assert not kind.transient
