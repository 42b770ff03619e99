"""
Timeout/Fallback Supervisor — bounded waits for every external call.

One Supervisor belongs to one checkout session. Each call is raced against its
deadline; when the collaborator times out or is unavailable, a predetermined
degraded value is substituted and tagged FALLBACK so reconciliation can find it
later. Once a collaborator has fallen back `degrade_threshold` times in the
session, the session is degraded for that collaborator and stops calling it,
returning fallbacks immediately.

Validation, not-found and permission errors are never absorbed.
"""
import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Generic, TypeVar

import httpx

from config import settings
from domain.enums import Source
from domain.errors import AVAILABILITY_ERRORS

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Supervised(Generic[T]):
    """A collaborator result tagged with where it came from."""
    value: T
    source: Source
    reason: str | None = None

    @property
    def is_fallback(self) -> bool:
        return self.source == Source.FALLBACK


@dataclass(frozen=True)
class FallbackEvent:
    collaborator: str
    action: str
    reason: str
    at: datetime


@dataclass
class Supervisor:
    """Session-scoped deadline + fallback policy."""
    session_id: str = ""
    degrade_threshold: int = field(default_factory=lambda: settings.fallback_degrade_threshold)
    events: list[FallbackEvent] = field(default_factory=list)
    _failures: Counter = field(default_factory=Counter, repr=False)

    def is_degraded(self, collaborator: str) -> bool:
        return self.degrade_threshold > 0 and self._failures[collaborator] >= self.degrade_threshold

    @property
    def degraded_collaborators(self) -> list[str]:
        return sorted(c for c in self._failures if self.is_degraded(c))

    async def call(
        self,
        collaborator: str,
        op: Callable[[], Awaitable[T]],
        *,
        timeout: float,
        fallback: Callable[[], T],
        action: str = "",
    ) -> Supervised[T]:
        """
        Run `op` within `timeout` seconds.

        Args:
            collaborator: which external system is called ("store", "gateway", ...)
            op: zero-arg coroutine factory, so degraded sessions never create the coroutine
            fallback: zero-arg factory for the degraded value
            action: what is being done, for logs and fallback events
        """
        label = f"{collaborator}.{action}" if action else collaborator

        if self.is_degraded(collaborator):
            logger.info(f"[{self.session_id}] {label}: {collaborator} degraded, using fallback")
            return Supervised(fallback(), Source.FALLBACK, "degraded")

        try:
            value = await asyncio.wait_for(op(), timeout=timeout)
        except asyncio.TimeoutError:
            return self._fall_back(collaborator, action, f"timeout after {timeout:g}s", fallback)
        except AVAILABILITY_ERRORS as e:
            return self._fall_back(collaborator, action, e.message, fallback)
        except httpx.TransportError as e:
            return self._fall_back(collaborator, action, f"{e.__class__.__name__}: {e}", fallback)
        return Supervised(value, Source.CONFIRMED)

    def _fall_back(self, collaborator: str, action: str, reason: str, fallback: Callable[[], T]) -> Supervised[T]:
        self.events.append(FallbackEvent(collaborator, action, reason, datetime.utcnow()))
        self._failures[collaborator] += 1
        logger.warning(f"[{self.session_id}] ⚠️  {collaborator}.{action} fell back ({reason})")
        if self.is_degraded(collaborator):
            logger.warning(f"[{self.session_id}] {collaborator} now skipped for the rest of the session")
        return Supervised(fallback(), Source.FALLBACK, reason)

    def describe_events(self) -> list[dict]:
        return [
            {
                "collaborator": e.collaborator,
                "action": e.action,
                "reason": e.reason,
                "at": e.at.isoformat(),
            }
            for e in self.events
        ]
