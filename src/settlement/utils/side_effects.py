"""Best-effort side effects.

Work wrapped here runs after a transactional commit point. Its failure is
logged and reported back as a message but never raised, so it cannot change
the outcome of the operation that committed.
"""

import logging
from collections.abc import Callable
from typing import Any, TypeVar

T = TypeVar("T")


def best_effort(
    logger: logging.Logger,
    action: str,
    func: Callable[..., T],
    *args: Any,
    **kwargs: Any,
) -> tuple[T | None, str | None]:
    """Run func, swallowing and logging any exception.

    Args:
        logger: Logger to report failures on
        action: Short description used in the log and warning
        func: Callable to run
        *args: Positional arguments for func
        **kwargs: Keyword arguments for func

    Returns:
        (result, None) on success, (None, warning message) on failure
    """
    try:
        return func(*args, **kwargs), None
    except Exception as e:
        logger.exception("Best-effort %s failed: %s", action, e)
        return None, f"{action} failed: {e}"
