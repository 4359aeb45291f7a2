"""Concurrency helpers for controlling background thread usage."""

from __future__ import annotations

from typing import Any, Callable

import anyio

from crm.core.config import settings

_outbound_sem = anyio.Semaphore(settings.OUTBOUND_MAX_CONCURRENCY)
_security_sem = anyio.Semaphore(settings.SECURITY_MAX_CONCURRENCY)


async def run_in_thread_limited(func: Callable[..., Any], *args: Any):
    """Run a sync callable (e.g. an outbound HTTP call) in a worker thread with bounded concurrency."""

    async with _outbound_sem:
        return await anyio.to_thread.run_sync(func, *args)


async def run_in_thread_security(func: Callable[..., Any], *args: Any):
    async with _security_sem:
        return await anyio.to_thread.run_sync(func, *args)
