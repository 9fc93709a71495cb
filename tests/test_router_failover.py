from __future__ import annotations

import asyncio
import time

import pytest

from chatrouter.errors import ConfigurationError, ModelTimeoutError, ProviderError
from chatrouter.router import ALL_UNAVAILABLE_MESSAGE, ModelRouter, StickyPreference

from tests.router_fakes import FakeRegistry, ScriptedProvider, make_catalog, make_request


def _route(router: ModelRouter, selection: str = "auto"):
    return asyncio.run(router.route(make_request(selection)))


def _setup(**behaviours):
    names = list(behaviours)
    catalog = make_catalog(*[(name, index) for index, name in enumerate(names, start=1)])
    providers = {name: ScriptedProvider(behaviour) for name, behaviour in behaviours.items()}
    preference = StickyPreference()
    router = ModelRouter(catalog, FakeRegistry(providers), preference=preference, timeout_ms=50)
    return router, providers, preference


def test_first_candidate_success_returns_trimmed_reply() -> None:
    router, providers, preference = _setup(a="  hello there \n", b="unused")

    outcome = _route(router)

    assert outcome.success
    assert outcome.response == "hello there"
    assert outcome.model_used == "A"
    assert providers["b"].calls == []
    assert preference.get() == "a"


def test_transient_failures_advance_to_third_candidate() -> None:
    router, providers, preference = _setup(
        a=ProviderError("Too many requests", status_code=429),
        b=ModelTimeoutError("B did not respond in time"),
        c="third time lucky",
    )

    outcome = _route(router)

    assert outcome.success
    assert outcome.model_used == "C"
    assert preference.get() == "c"
    assert [len(providers[name].calls) for name in ("a", "b", "c")] == [1, 1, 1]


def test_sticky_preference_is_used_by_next_auto_request() -> None:
    router, providers, _ = _setup(
        a=ProviderError("rate limit exceeded"),
        b="from b",
    )
    assert _route(router).model_used == "B"

    providers["a"].behaviours = ["from a"]
    outcome = _route(router)

    assert outcome.model_used == "B"
    assert len(providers["a"].calls) == 1


def test_specific_selection_does_not_update_preference() -> None:
    router, _, preference = _setup(a="from a", b="from b")

    outcome = _route(router, "b")

    assert outcome.success and outcome.model_used == "B"
    assert preference.get() is None


def test_auto_hard_failure_advances_when_candidates_remain() -> None:
    router, providers, _ = _setup(a=ProviderError("bad request", status_code=400), b="fallback")

    outcome = _route(router)

    assert outcome.success
    assert outcome.model_used == "B"


def test_auto_hard_failure_on_last_candidate_surfaces_message() -> None:
    router, _, preference = _setup(
        a=ProviderError("Rate limit"),
        b=RuntimeError("model exploded"),
    )

    outcome = _route(router)

    assert not outcome.success
    assert outcome.error == "model exploded"
    assert preference.get() is None


def test_single_candidate_hard_failure_returns_its_message() -> None:
    router, _, _ = _setup(a=ProviderError("content filtered", status_code=400))

    outcome = _route(router)

    assert outcome.to_payload() == {"success": False, "error": "content filtered"}


def test_specific_selection_hard_failure_stops_immediately() -> None:
    router, providers, _ = _setup(a=ProviderError("invalid image", status_code=400), b="never")

    outcome = _route(router, "a")

    assert outcome.error == "invalid image"
    assert providers["b"].calls == []


def test_specific_selection_rate_limited_reports_all_unavailable() -> None:
    router, _, _ = _setup(a=ProviderError("slow down", error_code="429"), b="never")

    outcome = _route(router, "a")

    assert outcome.error == ALL_UNAVAILABLE_MESSAGE


def test_all_transient_failures_report_generic_message() -> None:
    router, _, _ = _setup(
        a=ProviderError("x", status_code=429),
        b=ProviderError("y", error_code=429),
        c=ModelTimeoutError("z"),
    )

    outcome = _route(router)

    assert outcome.error == ALL_UNAVAILABLE_MESSAGE
    assert "x" not in outcome.error


def test_unknown_selection_fails_without_invoking_adapters() -> None:
    router, providers, _ = _setup(a="ok", b="ok")

    outcome = _route(router, "gpt-unknown")

    assert not outcome.success
    assert all(provider.calls == [] for provider in providers.values())


def test_empty_reply_is_treated_like_hard_failure() -> None:
    router, _, _ = _setup(a="   ", b="real answer")
    assert _route(router).model_used == "B"

    router, _, _ = _setup(a="")
    outcome = _route(router)
    assert outcome.error == "A returned an empty response"

    router, providers, _ = _setup(a="\n\t", b="never")
    outcome = _route(router, "a")
    assert outcome.error == "A returned an empty response"
    assert providers["b"].calls == []


def test_stalled_candidate_times_out_and_router_moves_on() -> None:
    router, _, _ = _setup(a=5.0, b="quick")

    started = time.perf_counter()
    outcome = _route(router)
    elapsed = time.perf_counter() - started

    assert outcome.model_used == "B"
    assert elapsed < 2.0


def test_candidate_receives_upstream_model_and_messages() -> None:
    router, providers, _ = _setup(a="ok")

    asyncio.run(router.route(make_request(text="what is up")))

    model, messages, image_refs = providers["a"].calls[0]
    assert model == "vendor/a"
    assert messages[-1].content == "what is up"
    assert image_refs == []


def test_missing_credentials_everywhere_raises_before_any_attempt() -> None:
    catalog = make_catalog(("a", 1), ("b", 2))
    providers = {
        "a": ScriptedProvider("ok", configured=False),
        "b": ScriptedProvider("ok", configured=False),
    }
    router = ModelRouter(catalog, FakeRegistry(providers))

    with pytest.raises(ConfigurationError):
        asyncio.run(router.route(make_request()))

    assert providers["a"].calls == [] and providers["b"].calls == []


def test_one_configured_provider_is_enough() -> None:
    catalog = make_catalog(("a", 1), ("b", 2))
    providers = {
        "a": ScriptedProvider(ProviderError("no credential"), configured=False),
        "b": ScriptedProvider("ok"),
    }
    router = ModelRouter(catalog, FakeRegistry(providers))

    outcome = asyncio.run(router.route(make_request()))

    assert outcome.model_used == "B"


def test_attempts_are_recorded_in_metrics(tmp_path) -> None:
    from chatrouter.metrics import MetricsLogger

    metrics = MetricsLogger(str(tmp_path))
    router, _, _ = _setup(a=ProviderError("rate limit"), b="ok")
    router.metrics = metrics

    _route(router)

    rendered = metrics.render()
    assert 'chat_attempts_total{model="a",outcome="rate_limited"} 1' in rendered
    assert 'chat_attempts_total{model="b",outcome="success"} 1' in rendered


def test_unwritable_metrics_directory_does_not_break_routing(tmp_path, caplog) -> None:
    from chatrouter.metrics import MetricsLogger

    metrics_dir = tmp_path / "metrics"
    metrics = MetricsLogger(str(metrics_dir))
    metrics_dir.rmdir()
    metrics_dir.write_text("not a directory", encoding="utf-8")
    router, _, preference = _setup(a=ProviderError("rate limit"), b="ok")
    router.metrics = metrics

    with caplog.at_level("ERROR", logger="chatrouter.router"):
        outcome = _route(router)

    assert outcome.success is True
    assert outcome.model_used == "B"
    assert preference.get() == "b"
    assert "metrics write failed model=a" in caplog.text
