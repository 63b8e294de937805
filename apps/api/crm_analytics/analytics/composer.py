from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from crm_analytics.analytics.errors import AggregationFailedError, AggregationTimeoutError
from crm_analytics.metrics import observe_aggregation, observe_aggregation_failure
from crm_analytics.otel import aggregation_span, get_tracer


@dataclass(frozen=True, slots=True)
class MetricJob:
    """One named sub-aggregation of a composed response.

    ``fallback`` builds the empty value used in place of a failed metric when
    partial results are enabled.
    """

    name: str
    run: Callable[[], Awaitable[Any]]
    fallback: Callable[[], Any] = lambda: None


@dataclass(slots=True)
class ComposedResult:
    values: dict[str, Any]
    errors: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class _Failed:
    metric: str
    error: BaseException


class AggregationComposer:
    """Fans independent sub-aggregations out concurrently and fans them back in.

    By default composition is all-or-nothing: the first failing job cancels the
    rest and the whole composition raises ``AggregationFailedError``. With
    ``partial=True`` failed jobs fall back to their empty value and are reported
    in ``ComposedResult.errors``. The deadline always applies to the whole set.

    Jobs share no mutable state and are not snapshot-isolated from each other:
    each one observes the store as of its own read.
    """

    def __init__(self, *, deadline_seconds: float | None = None, partial: bool = False) -> None:
        self.deadline_seconds = deadline_seconds
        self.partial = partial
        self._tracer = get_tracer("crm_analytics.analytics")

    async def compose(self, jobs: Sequence[MetricJob], *, query: str) -> ComposedResult:
        names = [job.name for job in jobs]
        if len(set(names)) != len(names):
            raise ValueError("Metric names must be unique within a composition")

        tasks = [asyncio.ensure_future(self._run_job(job, query)) for job in jobs]
        try:
            if self.deadline_seconds is None:
                outcomes = await asyncio.gather(*tasks)
            else:
                outcomes = await asyncio.wait_for(asyncio.gather(*tasks), timeout=self.deadline_seconds)
        except asyncio.TimeoutError as exc:
            await self._cancel(tasks)
            raise AggregationTimeoutError(self.deadline_seconds or 0.0) from exc
        except BaseException:
            await self._cancel(tasks)
            raise

        result = ComposedResult(values={})
        for job, outcome in zip(jobs, outcomes):
            if isinstance(outcome, _Failed):
                result.values[job.name] = job.fallback()
                result.errors[job.name] = f"Failed to compute {job.name}"
            else:
                result.values[job.name] = outcome
        return result

    async def _run_job(self, job: MetricJob, query: str) -> Any:
        started = time.perf_counter()
        try:
            with aggregation_span(self._tracer, job.name, query):
                return await job.run()
        except Exception as exc:
            observe_aggregation_failure(job.name)
            if self.partial:
                return _Failed(metric=job.name, error=exc)
            raise AggregationFailedError(job.name) from exc
        finally:
            observe_aggregation(job.name, time.perf_counter() - started)

    @staticmethod
    async def _cancel(tasks: list[asyncio.Future[Any]]) -> None:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
