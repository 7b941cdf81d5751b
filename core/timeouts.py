#!/usr/bin/env python3
"""
Blocking call with a time budget.

Database drivers only honour their own connect/read timeouts, so every
backend call is additionally run on a helper thread and abandoned once its
budget expires. The abandoned call keeps running until the driver returns and
releases its resources through its own finally blocks.
"""

import logging
import threading
from typing import Any, Callable, Dict, Optional

from core.errors import TimeoutError

logger = logging.getLogger(__name__)


def call_with_timeout(func: Callable[..., Any], timeout: Optional[float], operation: str,
                      *args, **kwargs) -> Any:
    """
    Run func(*args, **kwargs), raising TimeoutError if it does not finish in time.

    Args:
        func: Callable to execute
        timeout: Budget in seconds; None or <= 0 runs func inline without a budget
        operation: Human readable name used in the error message

    Raises:
        TimeoutError: when the budget is exceeded
        Exception: whatever func raised
    """
    if timeout is None or timeout <= 0:
        return func(*args, **kwargs)

    outcome: Dict[str, Any] = {}
    finished = threading.Event()

    def runner():
        try:
            outcome['value'] = func(*args, **kwargs)
        except BaseException as e:
            outcome['error'] = e
        finally:
            finished.set()

    worker = threading.Thread(target=runner, name=f"timed:{operation}", daemon=True)
    worker.start()

    if not finished.wait(timeout):
        logger.warning(f"{operation} timed out after {timeout:g}s")
        raise TimeoutError(f"{operation} timed out after {timeout:g}s", timeout, operation)

    if 'error' in outcome:
        raise outcome['error']
    return outcome.get('value')
