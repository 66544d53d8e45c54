import pytest

from seo_engine.v1.health.reporter import HealthReporter
from seo_engine.v1.queues.config import DAY_S, RetentionPolicy
from seo_engine.v1.queues.jobs import MonitorJob, QueueName
from seo_engine.v1.queues.registry import QueueRegistry
from seo_engine.v1.queues.schemas import WorkerHealth


@pytest.fixture
def reporter(queue_registry, store, settings) -> HealthReporter:
    return HealthReporter(queue_registry, store, settings)


async def fail_jobs(store, count: int) -> None:
    retention = RetentionPolicy(count=1000, age_s=DAY_S)
    for index in range(count):
        await store.enqueue("monitor", MonitorJob(project_id="p1", correlation_id=f"c{index}"))
        leased = await store.lease("monitor", "w1", 1000)
        await store.fail(leased, "boom", retention)


@pytest.mark.asyncio
async def test_idle_engine_is_healthy(reporter):
    report = await reporter.check_health()

    assert report.healthy is True
    assert report.issues == []
    assert {queue.name for queue in report.queues} == {name.value for name in QueueName}


@pytest.mark.asyncio
async def test_operator_pause_is_healthy(reporter, store):
    assert await reporter.pause("publish")
    assert await store.paused_queues() == {"publish": True}

    report = await reporter.check_health()

    assert report.healthy is True
    publish = next(queue for queue in report.queues if queue.name == "publish")
    assert publish.is_paused is True


@pytest.mark.asyncio
async def test_unexpected_pause_is_unhealthy(reporter, queue_registry):
    queue_registry.pause_all(expected=False)

    report = await reporter.check_health()

    assert report.healthy is False
    assert "queue build is paused unexpectedly" in report.issues


@pytest.mark.asyncio
async def test_failed_threshold(reporter, settings, store):
    settings.health_failed_threshold = 3

    await fail_jobs(store, 2)
    assert (await reporter.check_health()).healthy is True

    await fail_jobs(store, 1)
    report = await reporter.check_health()
    assert report.healthy is False
    assert report.issues == ["queue monitor has 3 failed jobs (threshold 3)"]


@pytest.mark.asyncio
async def test_metrics_totals(reporter, store):
    await fail_jobs(store, 1)
    await store.enqueue("monitor", MonitorJob(project_id="p1", correlation_id="a"))
    await store.enqueue("monitor", MonitorJob(project_id="p1", correlation_id="b"), delay_ms=5000)
    await reporter.pause("index")
    reporter.attach_workers(
        lambda: [
            WorkerHealth(
                queue_name="monitor",
                is_running=True,
                active_jobs=0,
                processed_jobs=4,
                failed_jobs=1,
            )
        ]
    )

    metrics = await reporter.metrics()

    assert metrics.total_waiting == 1
    assert metrics.total_delayed == 1
    assert metrics.total_failed == 1
    assert metrics.paused_queues == 1
    assert metrics.running_workers == 1
    assert metrics.processed_jobs == 4


@pytest.mark.asyncio
async def test_pause_unknown_queue(reporter, store):
    assert await reporter.pause("reports") is False
    assert await reporter.resume("reports") is False
    assert await store.paused_queues() == {}


@pytest.mark.asyncio
async def test_pause_is_shared_through_the_store(reporter, store, settings):
    # A reporter in another process: own registry, same store
    other = HealthReporter(QueueRegistry.from_settings(settings), store, settings)

    await reporter.pause("publish")
    publish = next(q for q in await other.queue_health() if q.name == "publish")
    assert publish.is_paused is True
    assert (await other.check_health()).healthy is True

    await other.resume("publish")
    assert not any(q.is_paused for q in await reporter.queue_health())


@pytest.mark.asyncio
async def test_shutdown_pause_overrides_operator_pause(reporter, queue_registry):
    await reporter.pause("index")
    queue_registry.pause_all(expected=False)

    flags = await reporter.pause_flags()

    assert flags["index"] is False
    assert "queue index is paused unexpectedly" in (await reporter.check_health()).issues
