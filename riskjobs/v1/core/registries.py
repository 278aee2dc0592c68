from typing import Any, Generic, Protocol, TypeVar, runtime_checkable

# Base registry implementation
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
                "registry is frozen in production mode"
            )
        self._implementations[name] = implementation

    def get(self, name: str) -> T:
        """Get an implementation by name."""
        if name not in self._implementations:
            raise KeyError(
                f"No {self.name.lower()} implementation registered with name: {name}"
            )
        return self._implementations[name]

    def get_or_none(self, name: str) -> T | None:
        """Get an implementation by name, or None if none is registered."""
        return self._implementations.get(name)

    def list(self) -> list[str]:
        """List all registered implementation names."""
        return list(self._implementations.keys())

    def __contains__(self, name: object) -> bool:
        return name in self._implementations

    def freeze(self) -> None:
        """Freeze the registry to prevent further modifications."""
        self._frozen = True

    def is_frozen(self) -> bool:
        """Check if the registry is frozen."""
        return self._frozen


# Job Registry - background processing handlers
class JobHandler(Protocol):
    """Protocol for job handlers that turn a job's input into its result."""

    async def execute(self, payload: dict[str, Any]) -> dict[str, Any] | None:
        """
        Run the unit of work for a job.

        Args:
            payload: The job's input, shape defined per job type

        Returns:
            Result dictionary stored on the completed job

        Raises:
            Any exception; the processor treats every raised error as a
            failed attempt regardless of its cause.
        """
        ...


@runtime_checkable
class CompensatingJobHandler(JobHandler, Protocol):
    """Handler that also cleans up once its job has permanently failed."""

    async def on_failure(self, payload: dict[str, Any], error: Exception) -> None:
        """
        Side-channel bookkeeping run once when the owning job reaches FAILED.

        Best effort: errors raised here are logged by the processor and never
        change the job's outcome.
        """
        ...


class JobRegistry(Registry[JobHandler]):
    """Registry mapping job types to their handlers."""

    def __init__(self):
        super().__init__("Job")
