"""
Prometheus metrics for token refresh operations.

Each coordinated refresh records its outcome and duration per provider; provider calls are counted separately so
the success rate reflects real refresh attempts rather than calls that found the token still valid.
"""

import time
from typing import Any

from prometheus_client import CollectorRegistry, Counter, Histogram

FAILED_OUTCOME = "failed"
SUCCESS_OUTCOMES = ("refreshed", "refreshed_by_another_process")
DURATION_BUCKETS = (0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0)


class RefreshMetrics:
    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()
        self.provider_calls = Counter(
            "storage_health_token_refresh_provider_calls",
            "Refresh requests sent to the storage provider",
            ["provider"],
            registry=self.registry,
        )
        self.outcomes = Counter(
            "storage_health_token_refresh_outcomes",
            "Coordinated token refresh outcomes",
            ["provider", "outcome", "error_type"],
            registry=self.registry,
        )
        self.duration = Histogram(
            "storage_health_token_refresh_duration_seconds",
            "Duration of coordinated token refreshes, lock wait included",
            ["provider", "outcome"],
            buckets=DURATION_BUCKETS,
            registry=self.registry,
        )

    def record_provider_call(self, provider: str) -> None:
        self.provider_calls.labels(provider=provider).inc()

    def record_outcome(
        self, provider: str, outcome: str, duration_seconds: float, error_type: str | None = None
    ) -> None:
        self.outcomes.labels(provider=provider, outcome=outcome, error_type=error_type or "").inc()
        self.duration.labels(provider=provider, outcome=outcome).observe(duration_seconds)

    def summary(self, provider: str | None = None) -> dict[str, dict[str, Any]]:
        """Per provider totals read back from the registry: outcomes, failure types, success rate, mean duration."""
        stats: dict[str, dict[str, Any]] = {}

        def entry(name: str) -> dict[str, Any]:
            return stats.setdefault(
                name,
                {"provider_calls": 0, "outcomes": {}, "failure_types": {}, "_count": 0.0, "_sum": 0.0},
            )

        for sample in _samples(self.provider_calls, "_total"):
            entry(sample.labels["provider"])["provider_calls"] += int(sample.value)

        for sample in _samples(self.outcomes, "_total"):
            data = entry(sample.labels["provider"])
            outcome = sample.labels["outcome"]
            data["outcomes"][outcome] = data["outcomes"].get(outcome, 0) + int(sample.value)
            if outcome == FAILED_OUTCOME:
                error_type = sample.labels["error_type"] or "unknown_error"
                data["failure_types"][error_type] = data["failure_types"].get(error_type, 0) + int(sample.value)

        for suffix in ("_count", "_sum"):
            for sample in _samples(self.duration, suffix):
                entry(sample.labels["provider"])[suffix] += sample.value

        result = {}
        for name, data in stats.items():
            if provider is not None and name != provider:
                continue
            count = data.pop("_count")
            total = data.pop("_sum")
            succeeded = sum(data["outcomes"].get(outcome, 0) for outcome in SUCCESS_OUTCOMES)
            failed = data["outcomes"].get(FAILED_OUTCOME, 0)
            attempted = succeeded + failed
            data["operations"] = int(count)
            data["success_rate"] = round(succeeded / attempted, 4) if attempted else None
            data["average_duration_seconds"] = round(total / count, 4) if count else None
            result[name] = data
        return result


def _samples(metric: Counter | Histogram, suffix: str) -> list[Any]:
    return [sample for family in metric.collect() for sample in family.samples if sample.name.endswith(suffix)]


class RefreshTimer:
    def __init__(self) -> None:
        self.start = time.perf_counter()

    def seconds(self) -> float:
        return time.perf_counter() - self.start


refresh_metrics = RefreshMetrics()
