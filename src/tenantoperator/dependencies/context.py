"""Process context management.

The operator serves no per-request state, but its background watches and
workers must be created when the application starts and stopped when it
shuts down. `ContextDependency` owns the process-global
`~tenantoperator.factory.ProcessContext` holding them.
"""

from ..config import Config
from ..factory import ProcessContext

__all__ = ["ContextDependency", "context_dependency"]


class ContextDependency:
    """Manage the process-global context of the tenant operator."""

    def __init__(self) -> None:
        self._process_context: ProcessContext | None = None

    @property
    def is_initialized(self) -> bool:
        """Whether the process context has been initialized."""
        return self._process_context is not None

    async def initialize(self, config: Config) -> None:
        """Initialize the process-global shared context and start the operator.

        Parameters
        ----------
        config
            Tenant operator configuration.
        """
        if self._process_context:
            await self._process_context.stop()
            await self._process_context.aclose()
        self._process_context = await ProcessContext.from_config(config)
        await self._process_context.start()

    async def aclose(self) -> None:
        """Stop the operator and clean up the per-process context."""
        if self._process_context:
            await self._process_context.stop()
            await self._process_context.aclose()
        self._process_context = None


context_dependency: ContextDependency = ContextDependency()
"""The dependency that owns the process context."""
