"""
Prometheus counters for the analysis pipeline.

Exposed over HTTP by `reflecta.api` at /metrics.
"""
from prometheus_client import Counter

enqueue_failures = Counter(
    "reflecta_enqueue_failures_total",
    "Analysis jobs that could not be enqueued for a new or edited entry",
)

jobs_claimed = Counter(
    "reflecta_jobs_claimed_total",
    "Claim attempts by outcome",
    ["outcome"],
)

jobs_finished = Counter(
    "reflecta_jobs_finished_total",
    "Jobs that reached a terminal status",
    ["status", "reason"],
)

analyzer_calls = Counter(
    "reflecta_analyzer_calls_total",
    "LLM calls made by the analyzer",
    ["tier", "outcome"],
)

analyzer_fallbacks = Counter(
    "reflecta_analyzer_fallbacks_total",
    "Analyses answered with the deterministic placeholder",
    ["reason"],
)

denormalize_failures = Counter(
    "reflecta_entry_denormalize_failures_total",
    "Summary/keyword copies onto entries that failed",
)

worker_loop_errors = Counter(
    "reflecta_worker_loop_errors_total",
    "Exceptions caught at the worker loop boundary",
)


def track_claim(won: bool) -> None:
    jobs_claimed.labels(outcome="won" if won else "lost").inc()


def track_job_finished(status: str, reason: str = "") -> None:
    jobs_finished.labels(status=status, reason=reason or "none").inc()


def track_analyzer_call(tier: str, ok: bool) -> None:
    analyzer_calls.labels(tier=tier, outcome="ok" if ok else "error").inc()


def track_analyzer_fallback(reason: str) -> None:
    analyzer_fallbacks.labels(reason=reason).inc()
