"""
Queue registry: the one place queue configuration lives.

Built once at startup and handed to the dispatcher, the workers and the
health reporter. Configuration is frozen after startup.

The registry also holds this process's own pause flags, set when its worker
pool shuts down. Operator pauses must reach workers in other processes, so
they live in the queue store instead (``QueueStore.set_paused``).
"""

from seo_engine.config.logging import get_logger
from seo_engine.config.settings import Settings
from seo_engine.v1.core.registries import Registry
from seo_engine.v1.queues.config import QueueConfig, build_queue_configs
from seo_engine.v1.queues.jobs import QueueName

logger = get_logger(__name__)


class QueueRegistry(Registry[QueueConfig]):
    """Registry of named queues and their process-local pause flags."""

    def __init__(self, configs: list[QueueConfig] | None = None):
        super().__init__("Queue")
        self._paused: dict[str, bool] = {}
        for config in configs or []:
            self.add(config)

    @classmethod
    def from_settings(cls, settings: Settings) -> "QueueRegistry":
        registry = cls(build_queue_configs(settings))
        registry.freeze()
        return registry

    def add(self, config: QueueConfig) -> None:
        self.register(config.name.value, config)

    def config(self, queue: QueueName | str) -> QueueConfig:
        return self.get(_queue_key(queue))

    def names(self) -> list[str]:
        return self.list()

    def is_paused(self, queue: QueueName | str) -> bool:
        return _queue_key(queue) in self._paused

    def paused(self) -> dict[str, bool]:
        """Locally paused queues mapped to whether the pause was expected."""
        return dict(self._paused)

    def pause(self, queue: QueueName | str, expected: bool = True) -> bool:
        """Pause leasing on a queue. Returns False for unknown queues."""
        key = _queue_key(queue)
        if not self.has(key):
            return False
        if key not in self._paused:
            self._paused[key] = expected
            logger.info("Queue paused", queue=key, operator=expected)
        return True

    def resume(self, queue: QueueName | str) -> bool:
        """Resume leasing on a queue. Returns False for unknown queues."""
        key = _queue_key(queue)
        if not self.has(key):
            return False
        if self._paused.pop(key, None) is not None:
            logger.info("Queue resumed", queue=key)
        return True

    def pause_all(self, expected: bool = True) -> None:
        for name in self.names():
            self.pause(name, expected=expected)
        logger.info("All queues paused")

    def resume_all(self) -> None:
        for name in self.names():
            self.resume(name)
        logger.info("All queues resumed")


def _queue_key(queue: QueueName | str) -> str:
    return queue.value if isinstance(queue, QueueName) else queue
