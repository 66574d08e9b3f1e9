"""429-aware retry around limiter-scheduled Battle.net calls."""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Awaitable, Callable, Optional, TypeVar

import httpx

from rostersync.core.config import settings
from rostersync.services.battlenet_errors import (
    BattleNetApiError,
    BattleNetNotFoundError,
    BattleNetRateLimitError,
)
from rostersync.services.rate_limiter import ReservoirLimiter, Sleeper

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RETRY_AFTER_SECONDS = 1.0


def parse_retry_after(value: Optional[str], *, now: Optional[datetime] = None) -> float:
    """Seconds to wait from a ``Retry-After`` header (delta seconds or HTTP date)."""
    if value is None or not value.strip():
        return DEFAULT_RETRY_AFTER_SECONDS
    raw = value.strip()
    try:
        return max(0.0, float(int(raw)))
    except ValueError:
        pass
    try:
        retry_at = parsedate_to_datetime(raw)
    except (TypeError, ValueError):
        return DEFAULT_RETRY_AFTER_SECONDS
    if retry_at is None:
        return DEFAULT_RETRY_AFTER_SECONDS
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=timezone.utc)
    current = now or datetime.now(timezone.utc)
    return max(0.0, (retry_at - current).total_seconds())


def new_job_id(operation: str, resource_id: str) -> str:
    return f"{operation}:{resource_id}:{uuid.uuid4().hex[:8]}"


async def schedule_with_retry(
    limiter: ReservoirLimiter,
    fn: Callable[[], Awaitable[T]],
    *,
    operation: str,
    resource_type: str,
    resource_id: str,
    region: str,
    job_id: Optional[str] = None,
    max_attempts: Optional[int] = None,
    jitter_seconds: Optional[float] = None,
    sleep: Optional[Sleeper] = None,
) -> T:
    """Run ``fn`` through ``limiter``, retrying on HTTP 429.

    ``fn`` must raise ``httpx.HTTPStatusError`` for non-2xx responses. 404 is
    surfaced as ``BattleNetNotFoundError`` without retrying; any other failure is
    terminal. Every attempt reuses the same logical job id.
    """
    attempts_allowed = max_attempts if max_attempts is not None else settings.BNET_MAX_ATTEMPTS
    jitter = jitter_seconds if jitter_seconds is not None else settings.BNET_RETRY_JITTER_MS / 1000
    wait = sleep or asyncio.sleep
    job = job_id or new_job_id(operation, resource_id)
    context = dict(
        operation=operation,
        resource_type=resource_type,
        resource_id=resource_id,
        region=region,
        job_id=job,
    )

    for attempt in range(1, attempts_allowed + 1):
        logger.debug("%s %s attempt %d/%d (job %s)", operation, resource_id, attempt, attempts_allowed, job)
        try:
            result = await limiter.schedule(job, fn)
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if status == 404:
                logger.info("%s %s not found (job %s)", operation, resource_id, job)
                raise BattleNetNotFoundError(
                    f"{resource_type} not found", status_code=404, **context
                ) from exc
            if status == 429:
                if attempt >= attempts_allowed:
                    logger.error(
                        "%s %s still rate limited after %d attempts (job %s)",
                        operation,
                        resource_id,
                        attempt,
                        job,
                    )
                    raise BattleNetRateLimitError(
                        f"rate limited after {attempt} attempts", status_code=429, **context
                    ) from exc
                delay = parse_retry_after(exc.response.headers.get("Retry-After")) + jitter
                logger.warning(
                    "%s %s rate limited on attempt %d/%d; retrying in %.2fs (job %s)",
                    operation,
                    resource_id,
                    attempt,
                    attempts_allowed,
                    delay,
                    job,
                )
                await wait(delay)
                continue
            logger.error("%s %s failed with HTTP %s (job %s)", operation, resource_id, status, job)
            raise BattleNetApiError(f"HTTP {status}", status_code=status, **context) from exc
        except httpx.RequestError as exc:
            logger.error("%s %s transport error: %s (job %s)", operation, resource_id, exc, job)
            raise BattleNetApiError(f"request failed: {exc}", **context) from exc
        else:
            logger.debug("%s %s succeeded on attempt %d (job %s)", operation, resource_id, attempt, job)
            return result

    # Only reachable when attempts_allowed < 1.
    raise BattleNetApiError("no attempts allowed", **context)
