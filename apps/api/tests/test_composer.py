from __future__ import annotations

import asyncio

import pytest

from crm_analytics.analytics.composer import AggregationComposer, MetricJob
from crm_analytics.analytics.errors import AggregationFailedError, AggregationTimeoutError


def _value(value: object, delay: float = 0.0):
    async def run() -> object:
        if delay:
            await asyncio.sleep(delay)
        return value

    return run


async def _boom() -> object:
    await asyncio.sleep(0)
    raise RuntimeError("store unavailable")


def test_compose_collects_every_metric_by_name() -> None:
    composer = AggregationComposer()
    jobs = [MetricJob("win_rate", _value(75.0, delay=0.01)), MetricJob("pipeline_velocity", _value(3.5))]

    result = asyncio.run(composer.compose(jobs, query="report"))

    assert result.values == {"win_rate": 75.0, "pipeline_velocity": 3.5}
    assert result.errors == {}


def test_jobs_run_concurrently() -> None:
    composer = AggregationComposer(deadline_seconds=1.0)
    jobs = [MetricJob(f"metric_{index}", _value(index, delay=0.2)) for index in range(10)]

    async def timed() -> float:
        loop = asyncio.get_running_loop()
        started = loop.time()
        await composer.compose(jobs, query="report")
        return loop.time() - started

    assert asyncio.run(timed()) < 1.0


def test_first_failure_fails_the_composition_and_cancels_siblings() -> None:
    cancelled = asyncio.Event()

    async def slow() -> object:
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            cancelled.set()
            raise
        return None

    composer = AggregationComposer()
    jobs = [MetricJob("deals_by_stage", _boom), MetricJob("activity_heatmap", slow)]

    async def run() -> None:
        with pytest.raises(AggregationFailedError) as excinfo:
            await composer.compose(jobs, query="report")
        assert cancelled.is_set()
        assert excinfo.value.metric == "deals_by_stage"
        assert isinstance(excinfo.value.__cause__, RuntimeError)

    asyncio.run(run())


def test_partial_mode_substitutes_fallbacks_and_reports_errors() -> None:
    composer = AggregationComposer(partial=True)
    jobs = [
        MetricJob("win_rate", _boom, fallback=lambda: 0.0),
        MetricJob("activities_by_type", _value([{"type": "call", "count": 1}]), fallback=list),
    ]

    result = asyncio.run(composer.compose(jobs, query="report"))

    assert result.values == {"win_rate": 0.0, "activities_by_type": [{"type": "call", "count": 1}]}
    assert result.errors == {"win_rate": "Failed to compute win_rate"}


def test_deadline_applies_to_the_whole_composition() -> None:
    composer = AggregationComposer(deadline_seconds=0.05, partial=True)
    jobs = [MetricJob("fast", _value(1)), MetricJob("slow", _value(2, delay=5))]

    with pytest.raises(AggregationTimeoutError) as excinfo:
        asyncio.run(composer.compose(jobs, query="dashboard"))

    assert excinfo.value.deadline_seconds == 0.05


def test_duplicate_metric_names_are_rejected() -> None:
    composer = AggregationComposer()
    jobs = [MetricJob("win_rate", _value(1)), MetricJob("win_rate", _value(2))]

    with pytest.raises(ValueError):
        asyncio.run(composer.compose(jobs, query="report"))
