import itertools
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from qrsec.aggregator import INCOMPLETE_LINE, VerdictAggregator, reduce_outcomes
from qrsec.verdict import OutcomeState, ProviderOutcome, Status

from conftest import FakeProvider

URL = "https://example.com/"
FAILURES = [OutcomeState.UNAVAILABLE, OutcomeState.TIMED_OUT, OutcomeState.MALFORMED_RESPONSE]


def _o(provider, state, detail=""):
    return ProviderOutcome(provider=provider, state=state, detail=detail)


def test_threat_wins_over_clean_in_any_order():
    outcomes = [_o("a", OutcomeState.CLEAN), _o("b", OutcomeState.MATCHED_THREAT)]
    first = reduce_outcomes(URL, outcomes, ["a", "b"])
    second = reduce_outcomes(URL, list(reversed(outcomes)), ["a", "b"])
    assert first == second
    assert first.status is Status.DANGER
    assert first.score == 10
    assert first.provider_used == "b"


def test_verdict_is_identical_for_every_arrival_order():
    outcomes = [
        _o("a", OutcomeState.TIMED_OUT),
        _o("b", OutcomeState.MATCHED_SUSPICIOUS, "1 engine"),
        _o("c", OutcomeState.CLEAN),
        _o("d", OutcomeState.MATCHED_SUSPICIOUS, "2 engines"),
    ]
    priority = ["a", "b", "c", "d"]
    verdicts = {reduce_outcomes(URL, perm, priority) for perm in itertools.permutations(outcomes)}
    assert len(verdicts) == 1
    verdict = verdicts.pop()
    assert verdict.status is Status.WARNING
    assert verdict.provider_used == "b"
    assert verdict.explanation[0].startswith("a:")


@pytest.mark.parametrize(
    "states,expected",
    [
        ([OutcomeState.MATCHED_THREAT] + [OutcomeState.MATCHED_SUSPICIOUS] * 5, Status.DANGER),
        ([OutcomeState.MATCHED_SUSPICIOUS] + [OutcomeState.CLEAN] * 5, Status.WARNING),
        ([OutcomeState.CLEAN] + FAILURES * 2, Status.SAFE),
    ],
)
def test_severity_priority_ignores_counts(states, expected):
    outcomes = [_o(f"p{i}", s) for i, s in enumerate(states)]
    priority = [f"p{i}" for i in reversed(range(len(states)))]
    assert reduce_outcomes(URL, outcomes, priority).status is expected


@pytest.mark.parametrize("combo", list(itertools.combinations_with_replacement(FAILURES, 2)))
def test_total_failure_is_never_safe(combo):
    outcomes = [_o(f"p{i}", s) for i, s in enumerate(combo)]
    verdict = reduce_outcomes(URL, outcomes, ["p0", "p1"])
    assert verdict.status is Status.WARNING
    assert verdict.score == 50
    assert verdict.provider_used == "none"
    assert verdict.explanation[-1] == INCOMPLETE_LINE


def test_priority_decides_which_provider_is_cited():
    outcomes = [_o("vt", OutcomeState.CLEAN), _o("gsb", OutcomeState.CLEAN)]
    assert reduce_outcomes(URL, outcomes, ["vt", "gsb"]).provider_used == "vt"
    assert reduce_outcomes(URL, outcomes, ["gsb", "vt"]).provider_used == "gsb"


def test_score_matches_status_for_every_state_mix():
    for states in itertools.product(list(OutcomeState), repeat=2):
        verdict = reduce_outcomes(URL, [_o("a", states[0]), _o("b", states[1])], ["a", "b"])
        if verdict.status is Status.DANGER:
            assert verdict.score <= 20
        elif verdict.status is Status.WARNING:
            assert 21 <= verdict.score <= 70
        else:
            assert verdict.score > 70


def test_explanation_uses_display_names():
    verdict = reduce_outcomes(
        URL,
        [_o("virustotal", OutcomeState.MATCHED_THREAT, "3 engines flagged as malicious.")],
        ["virustotal"],
        {"virustotal": "VirusTotal"},
    )
    assert verdict.explanation == ("VirusTotal: 3 engines flagged as malicious.",)


def test_aggregate_queries_all_providers():
    a = FakeProvider("a", OutcomeState.MATCHED_THREAT, "3 engines flagged")
    b = FakeProvider("b", OutcomeState.CLEAN, "No threats detected.")
    aggregator = VerdictAggregator([a, b], timeout_s=2.0)
    verdict = aggregator.aggregate(URL)
    assert (a.calls, b.calls) == (1, 1)
    assert verdict.status is Status.DANGER
    assert verdict.provider_used == "a"
    assert [o.provider for o in verdict.outcomes] == ["a", "b"]


def test_hanging_provider_does_not_hold_the_request(release):
    slow = FakeProvider("slow", OutcomeState.MATCHED_THREAT, block=release)
    fast = FakeProvider("fast", OutcomeState.CLEAN, "No threats detected.")
    aggregator = VerdictAggregator([slow, fast], timeout_s=0.3)

    started = time.monotonic()
    verdict = aggregator.aggregate(URL)
    elapsed = time.monotonic() - started
    release.set()

    assert elapsed < 0.3 + 0.5
    assert verdict.outcome_for("slow").state is OutcomeState.TIMED_OUT
    # the late threat is discarded; the answer that arrived in time decides
    assert verdict.status is Status.SAFE
    assert verdict.provider_used == "fast"


def test_only_hanging_providers_degrade_to_warning(release):
    slow = FakeProvider("slow", block=release)
    aggregator = VerdictAggregator([slow], timeout_s=0.2)
    verdict = aggregator.aggregate(URL)
    release.set()
    assert verdict.status is Status.WARNING
    assert verdict.provider_used == "none"


def test_provider_raising_past_boundary_is_unavailable():
    class Exploding(FakeProvider):
        def query(self, url):
            raise RuntimeError("bug")

    aggregator = VerdictAggregator([Exploding("x"), FakeProvider("y", OutcomeState.CLEAN)], timeout_s=2.0)
    verdict = aggregator.aggregate(URL)
    assert verdict.outcome_for("x").state is OutcomeState.UNAVAILABLE
    assert verdict.status is Status.SAFE


def test_concurrent_requests_do_not_eat_each_others_budget():
    class Sleeping(FakeProvider):
        def query(self, url):
            time.sleep(0.3)
            return super().query(url)

    aggregator = VerdictAggregator(
        [Sleeping("a", OutcomeState.CLEAN, "No threats detected."), Sleeping("b", OutcomeState.CLEAN, "No threats detected.")],
        timeout_s=1.0,
    )
    with ThreadPoolExecutor(max_workers=40) as callers:
        verdicts = list(callers.map(aggregator.aggregate, [f"{URL}{i}" for i in range(40)]))

    degraded = [v for v in verdicts if v.status is not Status.SAFE]
    assert degraded == []
    assert all(o.state is OutcomeState.CLEAN for v in verdicts for o in v.outcomes)
