import json
from datetime import timedelta

import pytest

from seo_engine.v1.pipeline.collaborators import PageStatus, ProjectStatus
from seo_engine.v1.pipeline.orchestrator import MONITOR_INTERVAL_MS
from seo_engine.v1.queues.errors import AgentError, TransientIOError
from seo_engine.v1.queues.jobs import OptimizeReason, WebhookType
from seo_engine.v1.queues.store import JobStatus
from seo_engine.v1.webhooks.signing import SIGNATURE_HEADER, verify

from conftest import FakeAgent


@pytest.fixture
def pool(engine):
    return engine.worker_pool()


async def waiting(store, queue):
    return await store.list_jobs(queue, JobStatus.WAITING)


def monitor_delays_ms(records, clock) -> list[int]:
    return sorted((record.run_at - clock()) // timedelta(milliseconds=1) for record in records)


class TestAgentTasks:
    @pytest.mark.asyncio
    async def test_project_level_output_saved_as_artifact(self, engine, pool, repository):
        await engine.dispatcher.schedule_agent_task("p1", "market_research", {"niche": "tea"})

        assert await pool.worker("agent-tasks").drain() == 1
        assert ("p1", "market_research") in repository.artifacts

    @pytest.mark.asyncio
    async def test_content_builder_marks_page_ready(self, engine, pool, repository, agents):
        repository.add_page("page-1")
        await engine.dispatcher.schedule_agent_task(
            "p1", "content_builder", {"page_title": "Page"}, page_id="page-1"
        )

        await pool.worker("agent-tasks").drain()

        page = repository.pages["page-1"]
        assert page.status == PageStatus.READY
        assert page.meta_title == "Brewing"
        assert agents["content_builder"].calls[0][1]["page_id"] == "page-1"

    @pytest.mark.asyncio
    async def test_deleted_page_skips_task(self, engine, pool, store, agents):
        await engine.dispatcher.schedule_agent_task(
            "p1", "content_builder", {}, page_id="deleted"
        )

        await pool.worker("agent-tasks").drain()

        assert agents["content_builder"].calls == []
        completed = await store.list_jobs("agent-tasks", JobStatus.COMPLETED)
        assert completed[0].result["skipped"] is True


class TestPublish:
    @pytest.mark.asyncio
    async def test_publish_updates_page_and_queues_followups(
        self, engine, pool, repository, store, publisher
    ):
        repository.add_page("page-1", slug="pour-over", status=PageStatus.READY, content="<p>x</p>")
        hook = repository.add_webhook("wh1", "https://hooks.example.com/a", ["page.published"])

        await engine.dispatcher.schedule_publish("p1", "page-1")
        assert await pool.worker("publish").drain() == 1

        page = repository.pages["page-1"]
        assert page.status == PageStatus.PUBLISHED
        assert page.remote_id == "wp-1"
        assert page.url == "https://example.com/pour-over"
        assert page.published_at is not None
        assert publisher.published[0].content == "<p>x</p>"

        index_jobs = await waiting(store, "index")
        assert index_jobs[0].job.url == "https://example.com/pour-over"
        assert index_jobs[0].job.page_id == "page-1"

        webhook_jobs = await waiting(store, "webhooks")
        assert len(webhook_jobs) == 1
        delivery = webhook_jobs[0].job
        assert delivery.webhook_type == WebhookType.WORDPRESS_PUBLISH
        assert json.loads(delivery.body)["event"] == "page.published"
        assert verify(hook.secret, delivery.body, delivery.headers[SIGNATURE_HEADER])

    @pytest.mark.asyncio
    async def test_publish_failure_marks_page_error_and_retries(
        self, engine, pool, repository, store, publisher
    ):
        repository.add_page("page-1", status=PageStatus.READY)
        publisher.error = TransientIOError("CMS unavailable")

        await engine.dispatcher.schedule_publish("p1", "page-1")
        await pool.worker("publish").drain()

        assert repository.pages["page-1"].status == PageStatus.ERROR
        records = await waiting(store, "publish")
        assert records[0].job.retry_count == 1
        assert (await store.counts("index")).waiting == 0

    @pytest.mark.asyncio
    async def test_retry_after_followup_failure_does_not_republish(
        self, engine, pool, repository, store, publisher, clock, monkeypatch
    ):
        repository.add_page("page-1", slug="pour-over", status=PageStatus.READY)
        repository.add_webhook("wh1", "https://hooks.example.com/a", ["page.published"])
        list_webhooks = repository.list_active_webhooks
        calls = []

        async def flaky_list_webhooks(project_id, event):
            calls.append(event)
            if len(calls) == 1:
                raise TransientIOError("database connection reset")
            return await list_webhooks(project_id, event)

        monkeypatch.setattr(repository, "list_active_webhooks", flaky_list_webhooks)

        await engine.dispatcher.schedule_publish("p1", "page-1")
        await pool.worker("publish").drain()
        assert (await waiting(store, "publish"))[0].job.retry_count == 1

        clock.advance(engine.registry.config("publish").backoff_base_ms)
        assert await pool.worker("publish").drain() == 1

        assert len(publisher.published) == 1
        page = repository.pages["page-1"]
        assert page.status == PageStatus.PUBLISHED
        assert page.remote_id == "wp-1"
        assert PageStatus.ERROR not in [status for _, status in repository.page_status_history]
        assert len(await waiting(store, "webhooks")) == 1
        index_jobs = await waiting(store, "index")
        assert [record.job.url for record in index_jobs] == ["https://example.com/pour-over"]

    @pytest.mark.asyncio
    async def test_publisher_review_blocks_unready_page(
        self, engine, pool, repository, publisher, services
    ):
        services.agents.register(
            "publisher", FakeAgent({"publish_ready": False, "seo_checklist": {"h1": False}})
        )
        repository.add_page("page-1", status=PageStatus.READY)

        await engine.dispatcher.schedule_publish("p1", "page-1")
        await pool.worker("publish").drain()

        assert publisher.published == []
        assert repository.pages["page-1"].status == PageStatus.ERROR

    @pytest.mark.asyncio
    async def test_publisher_review_overrides_meta(
        self, engine, pool, repository, publisher, services
    ):
        services.agents.register(
            "publisher",
            FakeAgent({"publish_ready": True, "final_meta_title": "Final Title"}),
        )
        repository.add_page("page-1", status=PageStatus.READY, meta_title="Draft Title")

        await engine.dispatcher.schedule_publish("p1", "page-1")
        await pool.worker("publish").drain()

        assert publisher.published[0].meta_title == "Final Title"

    @pytest.mark.asyncio
    async def test_publish_without_publisher_fails_terminally(
        self, engine, pool, repository, store, services
    ):
        services.publisher = None
        repository.add_page("page-1", status=PageStatus.READY)

        await engine.dispatcher.schedule_publish("p1", "page-1")
        await pool.worker("publish").drain()

        assert (await store.counts("publish")).failed == 1


class TestIndex:
    @pytest.mark.asyncio
    async def test_index_without_search_console_still_starts_monitor(
        self, engine, pool, repository, store, services
    ):
        services.search_console = None
        repository.projects["p1"] = repository.projects["p1"].model_copy(
            update={"status": ProjectStatus.BUILDING}
        )

        await engine.dispatcher.schedule_index("p1", "https://example.com/a")
        await engine.dispatcher.schedule_index("p1", "https://example.com/b")
        assert await pool.worker("index").drain() == 2

        assert repository.projects["p1"].status == ProjectStatus.LIVE
        assert await store.pending_for_project("monitor", "p1") == 1
        completed = await store.list_jobs("index", JobStatus.COMPLETED)
        assert completed[0].result["submitted"] is False


class TestMonitor:
    @pytest.mark.asyncio
    async def test_monitor_reschedules_once_after_success(
        self, engine, pool, repository, store, clock, receiver, agents
    ):
        repository.add_page("page-1", slug="pour-over", status=PageStatus.PUBLISHED)
        repository.add_webhook("wh1", "https://hooks.example.com/m", ["monitor.completed"])
        agents["monitor"].output = {
            "health_score": 74,
            "alerts": [{"type": "ranking_drop"}],
            "optimization_candidates": [
                {"page_slug": "pour-over", "priority": "high"},
                {"page_slug": "missing", "priority": "high"},
                {"page_slug": "pour-over", "priority": "low"},
            ],
        }

        await engine.dispatcher.schedule_monitor("p1")
        assert await pool.worker("monitor").drain() == 1

        assert repository.monitor_runs[0].health_score == 74
        assert monitor_delays_ms(await waiting(store, "monitor"), clock) == [MONITOR_INTERVAL_MS]

        optimize = await waiting(store, "optimize")
        assert len(optimize) == 1
        assert optimize[0].job.reason == OptimizeReason.PERFORMANCE_DROP

        assert len(receiver.requests) == 1
        payload = json.loads(receiver.requests[0].content)
        assert payload["event"] == "monitor.completed"
        assert payload["healthScore"] == 74
        assert payload["alertsCount"] == 1
        assert repository.triggered == ["wh1"]

    @pytest.mark.asyncio
    async def test_monitor_reschedules_after_failure(
        self, engine, pool, repository, store, clock, agents
    ):
        agents["monitor"].error = AgentError("monitor", "model unavailable")

        await engine.dispatcher.schedule_monitor("p1")
        await pool.worker("monitor").drain()

        assert repository.monitor_runs == []
        # The failed run is retried by the queue; the daily pass is still booked
        delays = monitor_delays_ms(await waiting(store, "monitor"), clock)
        assert delays == [1000, MONITOR_INTERVAL_MS]

    @pytest.mark.asyncio
    async def test_monitor_skips_paused_project(self, engine, pool, repository, store, clock, agents):
        repository.projects["p1"] = repository.projects["p1"].model_copy(
            update={"status": ProjectStatus.PAUSED}
        )

        await engine.dispatcher.schedule_monitor("p1")
        await pool.worker("monitor").drain()

        assert agents["monitor"].calls == []
        completed = await store.list_jobs("monitor", JobStatus.COMPLETED)
        assert completed[0].result == {"skipped": True, "reason": "project paused"}
        assert monitor_delays_ms(await waiting(store, "monitor"), clock) == [MONITOR_INTERVAL_MS]

    @pytest.mark.asyncio
    async def test_monitor_out_of_range_score_stored_as_unknown(
        self, engine, pool, repository, agents
    ):
        agents["monitor"].output = {"health_score": 140}

        await engine.dispatcher.schedule_monitor("p1")
        await pool.worker("monitor").drain()

        assert repository.monitor_runs[0].health_score is None

    @pytest.mark.asyncio
    async def test_malformed_monitor_report_is_retried(
        self, engine, pool, repository, store, agents
    ):
        agents["monitor"].output = {"optimization_candidates": "pour-over"}

        await engine.dispatcher.schedule_monitor("p1")
        await pool.worker("monitor").drain()

        assert repository.monitor_runs == []
        records = await waiting(store, "monitor")
        assert any(record.job.retry_count == 1 for record in records)


class TestOptimize:
    @pytest.mark.asyncio
    async def test_optimize_applies_updates(self, engine, pool, repository):
        repository.add_page("page-1", status=PageStatus.PUBLISHED, meta_title="Old")

        await engine.dispatcher.schedule_optimize("p1", "page-1")
        await pool.worker("optimize").drain()

        page = repository.pages["page-1"]
        assert page.meta_title == "Better Brewing"
        assert page.status == PageStatus.PUBLISHED
        assert ("page-1", PageStatus.OPTIMIZING) in repository.page_status_history

    @pytest.mark.asyncio
    async def test_failed_optimization_leaves_page_published(
        self, engine, pool, repository, store, agents
    ):
        repository.add_page("page-1", status=PageStatus.PUBLISHED, meta_title="Old")
        agents["optimizer"].error = AgentError("optimizer", "bad output")

        await engine.dispatcher.schedule_optimize("p1", "page-1")
        await pool.worker("optimize").drain()

        page = repository.pages["page-1"]
        assert page.status == PageStatus.PUBLISHED
        assert page.meta_title == "Old"
        assert (await waiting(store, "optimize"))[0].job.retry_count == 1
