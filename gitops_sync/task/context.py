"""Context management for TaskService."""

import contextvars
import contextlib
import logging
from collections.abc import AsyncGenerator

from .service import TaskService, TaskServiceImpl

__all__: list[str] = []

_LOGGER = logging.getLogger(__name__)

# Context variable for the current task service instance
_task_service_ctx: contextvars.ContextVar[TaskService | None] = contextvars.ContextVar(
    "_task_service_ctx", default=None
)


def get_task_service() -> TaskService:
    """Get the current task service instance.

    If no instance is set in the context variable, creates a new one.
    """
    instance = _task_service_ctx.get()
    if instance is None:
        instance = TaskServiceImpl()
        _task_service_ctx.set(instance)
    return instance


@contextlib.asynccontextmanager
async def task_service_context(
    service: TaskService | None = None,
) -> AsyncGenerator[TaskService, None]:
    """Context manager that installs a TaskService and shuts it down on exit.

    Args:
        service: Optional existing TaskService instance to use. If None,
                 a new instance will be created.

    Yields:
        The TaskService instance to use within the context
    """
    service = service or TaskServiceImpl()
    token = _task_service_ctx.set(service)
    try:
        yield service
    finally:
        await service.shutdown()
        _task_service_ctx.reset(token)
