"""
Post-commit hooks - best-effort side effects run after the primary commit.

Each hook runs inside its own error boundary: a failure is logged and the
remaining hooks still run. Nothing here can fail the originating operation.
"""
from typing import Awaitable, Callable

from app.core.logging import get_logger

logger = get_logger(__name__)

Hook = Callable[[], Awaitable[None]]


class PostCommitHooks:
    """Ordered list of side effects for one mutation"""

    def __init__(self) -> None:
        self._hooks: list[tuple[str, Hook]] = []

    def add(self, name: str, hook: Hook) -> None:
        self._hooks.append((name, hook))

    def __len__(self) -> int:
        return len(self._hooks)

    @property
    def names(self) -> list[str]:
        return [name for name, _ in self._hooks]

    async def run(self) -> list[str]:
        """Run every hook. Returns the names of the hooks that failed."""
        failed: list[str] = []
        for name, hook in self._hooks:
            try:
                await hook()
            except Exception as e:
                failed.append(name)
                logger.error(
                    "Post-commit hook failed",
                    extra_data={"hook": name, "error": str(e)},
                    exc_info=True,
                )
        self._hooks.clear()
        return failed
