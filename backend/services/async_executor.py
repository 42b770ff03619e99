"""
Thread pool for the invoice renderer's blocking work.

Jinja2 rendering and disk writes are synchronous. They run on a small named
pool so a render can be raced against its deadline without stalling the event
loop. A render that loses the race keeps running in its thread, so documents
are written atomically and a half-written invoice is never visible.
"""
import asyncio
import contextlib
import functools
import logging
import os
import tempfile
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, TypeVar

from config import settings
from domain.errors import UnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RenderPool:
    """Lazily started pool; restarts on demand after shutdown()."""

    def __init__(self, max_workers: int | None = None):
        self.max_workers = max_workers or settings.invoice_render_workers
        self._executor: ThreadPoolExecutor | None = None

    @property
    def started(self) -> bool:
        return self._executor is not None

    def _get(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="invoice_render")
            logger.info(f"Invoice render pool started (max_workers={self.max_workers})")
        return self._executor

    async def run(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._get(), functools.partial(func, *args, **kwargs))

    def shutdown(self) -> None:
        """Wait for renders still in their threads, then stop the pool."""
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
            logger.info("Invoice render pool stopped")


render_pool = RenderPool()


def write_atomic(directory: str, filename: str, content: bytes) -> str:
    """
    Write content to directory/filename through a temp file and a rename.

    Returns the final path. OSError surfaces as UnavailableError.
    """
    path = os.path.join(directory, filename)
    try:
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=f".{filename}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(content)
            os.replace(tmp_path, path)
        except OSError:
            with contextlib.suppress(OSError):
                os.unlink(tmp_path)
            raise
    except OSError as e:
        raise UnavailableError("document renderer", f"cannot write {path}: {e.strerror}") from e
    return path
