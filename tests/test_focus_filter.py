from datetime import timedelta

import pytest

from quotio_observability.models.observability import ObservabilityFocusFilter
from quotio_observability.services.focus_filter import (
    GENERIC_FOCUS_SOURCES,
    apply_focus,
    apply_relaxed,
    apply_strict,
    is_generic_focus_source,
)


def test_strict_request_id_is_case_insensitive(make_request):
    records = [
        make_request(request_id="abc", model="x"),
        make_request(request_id="ABC", model="y"),
        make_request(request_id="zzz"),
    ]
    result = apply_strict(records, ObservabilityFocusFilter(request_id="abc"))
    assert result == records[:2]


def test_strict_request_id_ignores_other_fields(make_request):
    records = [make_request(request_id="abc", model="x")]
    focus = ObservabilityFocusFilter(request_id="abc", model="nope", account="nobody")
    assert apply_strict(records, focus) == records


def test_strict_request_id_matches_evidence_id(make_request, make_evidence):
    record = make_request(request_id=None, model="gpt-5")
    evidence = make_evidence(request_id="Server-Id")
    result = apply_strict([record], ObservabilityFocusFilter(request_id="server-id"), lambda r: evidence)
    assert result == [record]


def test_strict_ands_present_fields(make_request):
    match = make_request(model="gpt-5-codex", account_hint="alice@example.com", source="codex")
    wrong_model = make_request(model="claude", account_hint="alice@example.com", source="codex")
    wrong_account = make_request(model="gpt-5", account_hint="bob", source="codex")
    focus = ObservabilityFocusFilter(model="GPT", account="alice", source="codex")
    assert apply_strict([match, wrong_model, wrong_account], focus) == [match]


def test_strict_account_not_enforced_without_observed_account(make_request):
    record = make_request(model="gpt-5")
    assert apply_strict([record], ObservabilityFocusFilter(account="alice")) == [record]


def test_strict_source_matches_endpoint(make_request):
    record = make_request(source="cli", endpoint="/v1/codex/responses")
    assert apply_strict([record], ObservabilityFocusFilter(source="codex")) == [record]


def test_strict_source_uses_evidence_then_provider(make_request, make_evidence):
    record = make_request(source=None, provider="claude")
    evidence = make_evidence(source="codex")
    focus = ObservabilityFocusFilter(source="codex")
    assert apply_strict([record], focus, lambda r: evidence) == [record]
    assert apply_strict([record], focus) == []


@pytest.mark.parametrize("source", sorted(GENERIC_FOCUS_SOURCES))
def test_generic_sources_never_constrain(make_request, source):
    record = make_request(source="codex", provider="codex")
    focus = ObservabilityFocusFilter(source=source.upper())
    assert is_generic_focus_source(source.upper())
    assert apply_strict([record], focus) == [record]
    assert apply_relaxed([record], focus) == []


def test_relaxed_account_plus_time_window(make_request, base_time):
    hit = make_request(model="claude", account_hint="alice", timestamp=base_time + timedelta(hours=2))
    miss = make_request(model="claude", account_hint="bob", timestamp=base_time + timedelta(hours=9))
    focus = ObservabilityFocusFilter(model="gpt", account="alice", timestamp=base_time)

    assert apply_strict([hit, miss], focus) == []
    assert apply_relaxed([hit, miss], focus) == [hit]
    assert apply_focus([hit, miss], focus) == [hit]


def test_relaxed_time_window_uses_evidence_date(make_request, make_evidence, base_time):
    record = make_request(timestamp=base_time + timedelta(hours=12))
    evidence = make_evidence(timestamp="2026-02-16T13:00:00Z")
    focus = ObservabilityFocusFilter(timestamp=base_time)
    assert apply_relaxed([record], focus) == []
    assert apply_relaxed([record], focus, lambda r: evidence) == [record]


def test_relaxed_is_superset_of_strict(make_request, base_time):
    records = [
        make_request(model="gpt-5", account_hint="alice"),
        make_request(model="gpt-4", account_hint="bob"),
        make_request(model="claude", account_hint="alice", timestamp=base_time - timedelta(days=1)),
    ]
    focus = ObservabilityFocusFilter(model="gpt", account="alice")
    strict = apply_strict(records, focus)
    relaxed = apply_relaxed(records, focus)
    assert all(record in relaxed for record in strict)


def test_focus_prefers_strict_when_non_empty(make_request, base_time):
    exact = make_request(model="gpt-5", account_hint="alice")
    nearby = make_request(model="claude", account_hint="alice")
    focus = ObservabilityFocusFilter(model="gpt", account="alice", timestamp=base_time)
    assert apply_focus([exact, nearby], focus) == [exact]


def test_empty_focus_keeps_everything_strict(make_request):
    records = [make_request(), make_request(model="x")]
    assert apply_strict(records, ObservabilityFocusFilter()) == records
