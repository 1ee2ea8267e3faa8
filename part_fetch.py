"""
Bounded retrieval of a single message part.

A part fetch runs on the session's own single worker thread, so commands on
one IMAP connection never interleave, and the caller waits on it for at
most `timeout_ms`. A fetch that loses the race while still queued is
cancelled; one already running finishes on the worker and its result is
dropped.
"""
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Optional, Union
import logging
import threading

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 5000


@dataclass(frozen=True)
class Success:
    content: bytes


@dataclass(frozen=True)
class Timeout:
    pass


@dataclass(frozen=True)
class FetchError:
    reason: str


FetchOutcome = Union[Success, Timeout, FetchError]


class SerialWorker:
    """One worker thread per session; everything submitted runs in order."""

    def __init__(self):
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='imap-part')
        self._pending = set()
        self._pending_lock = threading.Lock()

    def submit(self, fn, *args):
        future = self._executor.submit(fn, *args)
        with self._pending_lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return future

    def _forget(self, future) -> None:
        with self._pending_lock:
            self._pending.discard(future)

    def stop_worker(self) -> bool:
        """Stop accepting work without waiting. Returns True if a fetch is still in flight."""
        self._executor.shutdown(wait=False, cancel_futures=True)
        with self._pending_lock:
            return any(not f.done() for f in self._pending)


def _discard(future) -> None:
    if not future.cancelled() and future.exception() is not None:
        logger.debug('Late part fetch failed after timeout: %s', future.exception())


def fetch_part(session, item, part, timeout_ms: Optional[int] = DEFAULT_TIMEOUT_MS) -> FetchOutcome:
    try:
        future = session.submit(session.fetch_part_content, item, part)
    except RuntimeError as e:
        # worker already shut down
        return FetchError(str(e))
    timeout = timeout_ms / 1000.0 if timeout_ms else None
    try:
        content = future.result(timeout=timeout)
    except FutureTimeout:
        # still queued: drop it; already running: let it finish unobserved
        if not future.cancel():
            future.add_done_callback(_discard)
        return Timeout()
    except Exception as e:
        return FetchError(str(e) or e.__class__.__name__)
    if isinstance(content, str):
        content = content.encode('utf-8')
    return Success(content)
