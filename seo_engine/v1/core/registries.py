from typing import Any, Generic, Protocol, TypeVar

T = TypeVar("T")


class Registry(Generic[T]):
    """Generic registry for pluggable implementations."""

    def __init__(self, name: str):
        self.name = name
        self._implementations: dict[str, T] = {}
        self._frozen = False

    def register(self, name: str, implementation: T) -> None:
        """Register an implementation with a given name."""
        if self._frozen:
            raise RuntimeError(
                f"Cannot register '{name}' in {self.name.lower()} registry: "
                "registry is frozen"
            )
        self._implementations[name] = implementation

    def get(self, name: str) -> T:
        """Get an implementation by name."""
        if name not in self._implementations:
            raise KeyError(
                f"No {self.name.lower()} implementation registered with name: {name}"
            )
        return self._implementations[name]

    def has(self, name: str) -> bool:
        return name in self._implementations

    def list(self) -> list[str]:
        """List all registered implementation names."""
        return list(self._implementations.keys())

    def freeze(self) -> None:
        """Freeze the registry to prevent further modifications."""
        self._frozen = True

    def is_frozen(self) -> bool:
        """Check if the registry is frozen."""
        return self._frozen


# Agents every pipeline stage calls; "publisher" is an optional pre-publish review
PIPELINE_AGENTS = (
    "market_research",
    "site_architect",
    "content_builder",
    "elementor_builder",
    "internal_linker",
    "monitor",
    "optimizer",
)


class Agent(Protocol):
    """Protocol for content-generation agents."""

    async def run(self, project_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        """
        Run the agent for a project.

        Returns the agent's schema-validated output. Raises AgentError when
        the upstream model fails or its output does not validate.
        """
        ...


class AgentRegistry(Registry[Agent]):
    """Registry for agents (market_research, site_architect, monitor, ...)."""

    def __init__(self):
        super().__init__("Agent")

    def missing(self) -> list[str]:
        """Pipeline agents with no registered implementation."""
        return [name for name in PIPELINE_AGENTS if not self.has(name)]
