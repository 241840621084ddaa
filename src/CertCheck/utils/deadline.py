import logging
import threading
from enum import Enum
from typing import Any, Callable, Optional

from CertCheck.utils.errors import DeadlineExceeded

class TimeoutMode(Enum):
    ENFORCED = "enforced"   # operation runs in a daemon worker thread joined with a wall-clock deadline
    DISABLED = "disabled"   # no timeout configured (0); operation runs inline without any guard

    @classmethod
    def for_timeout(cls, timeout: Optional[float]) -> "TimeoutMode":
        if timeout is None or timeout <= 0:
            return cls.DISABLED
        return cls.ENFORCED

def run_with_deadline(operation: Callable[..., Any], timeout: Optional[float], *args, **kwargs) -> Any:
    """
    Run operation(*args, **kwargs) and give up after `timeout` seconds.

    The worker is a daemon thread, so an operation stuck in a blocking read does not keep the process
    alive once the caller has reported the timeout.

    Raises:
        DeadlineExceeded if the operation has not finished in time; otherwise whatever the operation raised.
    """
    mode = TimeoutMode.for_timeout(timeout)
    if mode == TimeoutMode.DISABLED:
        logging.warning(f"No timeout configured; running {getattr(operation, '__name__', 'operation')}() without a deadline.")
        return operation(*args, **kwargs)

    outcome = {}

    def worker() -> None:
        try:
            outcome["value"] = operation(*args, **kwargs)
        except BaseException as e:
            outcome["error"] = e

    thread = threading.Thread(target=worker, name="certcheck-deadline", daemon=True)
    thread.start()
    thread.join(timeout)

    if thread.is_alive():
        logging.error(f"Operation did not complete within {timeout:g} seconds.")
        raise DeadlineExceeded(timeout)
    if "error" in outcome:
        raise outcome["error"]
    return outcome.get("value")
