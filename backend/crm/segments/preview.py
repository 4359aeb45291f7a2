"""Debounced audience preview orchestration for rule editors.

Each tree change restarts a quiet period; only the tree present when the
period elapses is evaluated. Every evaluation that is started gets a sequence
number and only the most recent one may update ``state``, so a slow response
to an older tree can never overwrite a newer result.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
from typing import Awaitable, Callable, List, Optional

from loguru import logger

from crm.core.config import settings
from crm.schemas.segment import AudiencePreviewOut
from crm.segments.rules import GroupNode, is_complete

Fetcher = Callable[[GroupNode], Awaitable[AudiencePreviewOut]]

GENERIC_ERROR_MESSAGE = "Error fetching audience preview."


class AudiencePreviewError(Exception):
    """An evaluation request failed; ``message`` is fit to show to the user."""

    def __init__(self, message: str = GENERIC_ERROR_MESSAGE, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


@dataclass(frozen=True)
class PreviewState:
    audience_size: int = 0
    sample_customer_emails: List[str] = field(default_factory=list)
    loading: bool = False
    error: Optional[str] = None


class AudiencePreviewer:
    """Schedules audience evaluations for a changing rule tree.

    ``fetch`` performs one evaluation (normally ``CrmApiClient.get_audience_preview``).
    ``on_change`` is called with the new audience size after each accepted result.
    ``loop`` defaults to the running event loop.
    """

    def __init__(
        self,
        fetch: Fetcher,
        *,
        delay: Optional[float] = None,
        on_change: Optional[Callable[[int], None]] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self._fetch = fetch
        self._delay = delay if delay is not None else settings.AUDIENCE_PREVIEW_DEBOUNCE_MS / 1000
        self._on_change = on_change
        self._loop = loop
        self._timer: Optional[asyncio.TimerHandle] = None
        self._tasks: set[asyncio.Task] = set()
        self._seq = 0
        self.state = PreviewState()

    @property
    def pending(self) -> bool:
        """True while a quiet period is running."""
        return self._timer is not None

    def schedule(self, tree: GroupNode) -> None:
        """Restart the quiet period; ``tree`` is evaluated if no other change follows."""

        loop = self._loop or asyncio.get_running_loop()
        if self._timer is not None:
            self._timer.cancel()
        self._timer = loop.call_later(self._delay, self._fire, tree.model_copy(deep=True))

    def _fire(self, tree: GroupNode) -> None:
        self._timer = None
        self._seq += 1
        seq = self._seq

        if not is_complete(tree):
            self.state = PreviewState()
            logger.bind(seq=seq).debug("audience_preview_short_circuit")
            return

        self.state = replace(self.state, loading=True, error=None)
        loop = self._loop or asyncio.get_running_loop()
        task = loop.create_task(self._evaluate(seq, tree))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _evaluate(self, seq: int, tree: GroupNode) -> None:
        error: Optional[str] = None
        result: Optional[AudiencePreviewOut] = None
        try:
            result = await self._fetch(tree)
        except AudiencePreviewError as exc:
            error = exc.message
        except Exception:
            logger.exception("audience_preview_failed")
            error = GENERIC_ERROR_MESSAGE

        if seq != self._seq:
            logger.bind(seq=seq, current=self._seq).debug("audience_preview_stale")
            return

        if result is None:
            self.state = replace(self.state, loading=False, error=error)
            return

        self.state = PreviewState(
            audience_size=result.audience_size,
            sample_customer_emails=list(result.sample_customer_emails),
        )
        if self._on_change is not None:
            self._on_change(result.audience_size)

    async def flush(self) -> None:
        """Wait for evaluations already in flight (not for a pending quiet period)."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def aclose(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
