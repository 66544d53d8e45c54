from typing import Any

import pytest

from seo_engine.v1.core.registries import AgentRegistry, Registry
from seo_engine.v1.queues.config import QueueConfig
from seo_engine.v1.queues.jobs import QueueName
from seo_engine.v1.queues.registry import QueueRegistry


class MockAgent:
    async def run(self, project_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        return {"project_id": project_id}


def test_registry_basic_operations():
    """Test basic registry register, get, list operations."""
    registry = Registry[str]("Test")

    assert registry.list() == []

    registry.register("test_impl", "test_value")
    assert registry.get("test_impl") == "test_value"
    assert registry.has("test_impl")
    assert registry.list() == ["test_impl"]

    with pytest.raises(KeyError, match="No test implementation registered"):
        registry.get("nonexistent")


def test_registry_freeze():
    registry = Registry[str]("Test")
    registry.register("impl1", "value1")
    registry.freeze()

    assert registry.is_frozen()
    with pytest.raises(RuntimeError, match="registry is frozen"):
        registry.register("impl2", "value2")


def test_agent_registry():
    agents = AgentRegistry()
    agent = MockAgent()
    agents.register("market_research", agent)

    assert agents.get("market_research") is agent
    assert not agents.has("monitor")


def test_agent_registry_reports_missing_pipeline_agents(services):
    assert services.agents.missing() == []

    agents = AgentRegistry()
    agents.register("monitor", MockAgent())
    assert "monitor" not in agents.missing()
    assert agents.missing()[0] == "market_research"


def test_queue_registry_from_settings(settings):
    registry = QueueRegistry.from_settings(settings)

    assert set(registry.names()) == {name.value for name in QueueName}
    assert registry.is_frozen()

    agent_tasks = registry.config(QueueName.AGENT_TASKS)
    assert agent_tasks.retry_attempts == 5
    assert agent_tasks.backoff_base_ms == 5000

    webhooks = registry.config("webhooks")
    assert webhooks.retry_attempts == 10
    assert webhooks.backoff_base_ms == 2000

    build = registry.config(QueueName.BUILD)
    assert build.retry_attempts == settings.retry_attempts
    assert build.backoff_base_ms == settings.retry_delay_ms


def test_queue_registry_is_frozen_after_startup(settings):
    registry = QueueRegistry.from_settings(settings)
    extra = QueueConfig(
        name=QueueName.BUILD, max_concurrency=1, retry_attempts=0, backoff_base_ms=0
    )
    with pytest.raises(RuntimeError):
        registry.add(extra)


def test_queue_pause_and_resume(queue_registry):
    assert not queue_registry.is_paused("publish")

    assert queue_registry.pause("publish") is True
    assert queue_registry.is_paused(QueueName.PUBLISH)
    assert queue_registry.paused() == {"publish": True}

    assert queue_registry.resume("publish") is True
    assert not queue_registry.is_paused("publish")


def test_queue_pause_unknown(queue_registry):
    assert queue_registry.pause("nope") is False
    assert queue_registry.resume("nope") is False


def test_pause_all_unexpected_keeps_operator_pauses(queue_registry):
    queue_registry.pause("index")
    queue_registry.pause_all(expected=False)

    assert all(queue_registry.is_paused(name) for name in queue_registry.names())
    assert queue_registry.paused()["index"] is True
    assert queue_registry.paused()["build"] is False

    queue_registry.resume_all()
    assert not any(queue_registry.is_paused(name) for name in queue_registry.names())
