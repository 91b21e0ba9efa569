"""Enrichment queue scheduler.

Drives the automatic enrichment of catalog items: picks eligible items in
listing order, respects the rate limiter's window and cooldown, dispatches
one batch at a time through the BatchEnrichmentClient and writes every
outcome back to the item store as a status change.

Only one dispatch is ever in flight. The inter-batch delay shrinks to its
floor after a successful batch and doubles (up to a ceiling) after each
non-quota failure.
"""

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional

from linkhub.core.enrichment_policy import is_soft_failure, merge_result
from linkhub.core.services.batch_enrichment import BatchEnrichmentClient
from linkhub.domain.events.queue_events import (
    BatchCompleted,
    BatchDispatched,
    BatchFailed,
    CooldownEntered,
    DelayAdjusted,
    DomainEvent,
)
from linkhub.domain.interfaces.item_store import ItemStore
from linkhub.domain.models.catalog import CatalogItem, EnrichmentRequest, EnrichmentResult, ProcessingStatus
from linkhub.domain.models.common import Clock, ItemId, system_clock
from linkhub.domain.models.errors import DispatchRefusedError, ItemNotFoundError
from linkhub.infrastructure.cache.result_cache import ResultCache, make_enrichment_key
from linkhub.infrastructure.config.settings import QueueSettings
from linkhub.infrastructure.resilience.error_classifier import is_quota_error
from linkhub.infrastructure.resilience.rate_limiter import RateLimiter, format_cooldown

logger = logging.getLogger(__name__)

EventListener = Callable[[DomainEvent], None]
Sleep = Callable[[float], Awaitable[None]]


class TickOutcome(str, Enum):
    """What a single driver cycle did."""
    DISABLED = "disabled"       # automatic processing is off
    BUSY = "busy"               # another dispatch is in flight
    IDLE = "idle"               # nothing eligible
    COOLDOWN = "cooldown"       # rate limiter cooldown, nothing touched
    THROTTLED = "throttled"     # request window exhausted, deferred
    CACHED = "cached"           # every candidate was served from the cache
    DISPATCHED = "dispatched"   # provider answered, results applied
    FAILED = "failed"           # provider call failed, items reverted


class QueueScheduler:
    """Single-instance driver of the enrichment queue."""

    def __init__(
        self,
        item_store: ItemStore,
        client: BatchEnrichmentClient,
        rate_limiter: RateLimiter,
        settings: QueueSettings,
        cache: Optional[ResultCache] = None,
        clock: Clock = system_clock,
        sleep: Sleep = asyncio.sleep,
    ):
        self.item_store = item_store
        self.client = client
        self.rate_limiter = rate_limiter
        self.settings = settings
        self.cache = cache
        self.clock = clock
        self._sleep = sleep
        self.auto_processing = settings.auto_processing
        self.delay = settings.base_delay_seconds
        self._busy = False
        self._listeners: List[EventListener] = []
        self._loop_task: Optional[asyncio.Task] = None
        self._cycle_task: Optional[asyncio.Task] = None
        self._wakeup: Optional[asyncio.Event] = None
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._stopping = False
        logger.info(
            f"QueueScheduler initialized: batch_size={settings.batch_size}, delay={self.delay}s "
            f"(floor {settings.min_delay_seconds}s, ceiling {settings.max_delay_seconds}s), "
            f"auto_processing={self.auto_processing}"
        )

    # --- Events ---

    def add_listener(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    def _emit(self, event: DomainEvent) -> None:
        logger.debug(f"EVENT: {event}")
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Queue event listener failed: {e}", exc_info=True)

    # --- Eligibility ---

    @property
    def busy(self) -> bool:
        return self._busy

    def is_eligible(self, item: CatalogItem, now: float) -> bool:
        status = item.processing_status
        if status in (ProcessingStatus.PENDING, ProcessingStatus.QUEUED):
            return True
        if status is ProcessingStatus.ERROR:
            if not item.has_usable_description():
                return True
            return now - (item.last_error_at or 0.0) > self.settings.error_retry_grace_seconds
        return False

    async def eligible_items(self) -> List[CatalogItem]:
        now = self.clock()
        return [item for item in await self.item_store.list_items() if self.is_eligible(item, now)]

    # --- Delay ---

    def _set_delay(self, value: float, reason: str) -> None:
        if value == self.delay:
            return
        previous, self.delay = self.delay, value
        logger.info(f"Inter-batch delay {previous:.1f}s -> {value:.1f}s ({reason})")
        self._emit(DelayAdjusted(previous_seconds=previous, current_seconds=value, reason=reason))

    # --- Driver cycle ---

    async def tick(self) -> TickOutcome:
        """Runs one driver cycle. A tick while a dispatch is in flight is a no-op."""
        if not self.auto_processing:
            return TickOutcome.DISABLED
        if self._busy:
            return TickOutcome.BUSY
        self._busy = True
        try:
            eligible = await self.eligible_items()
            if not eligible:
                return TickOutcome.IDLE
            if self.rate_limiter.is_in_cooldown():
                # No placeholder "processing" writes while throttled
                logger.debug(
                    f"In cooldown ({format_cooldown(self.rate_limiter.cooldown_remaining())} left); "
                    f"{len(eligible)} item(s) waiting."
                )
                return TickOutcome.COOLDOWN

            candidates = eligible[: self.settings.batch_size]
            cache_hits = await self._apply_cached(candidates)
            misses = [item for item in candidates if item.id not in cache_hits]
            if not misses:
                self._emit(BatchCompleted(updated=[], soft_failures=[], missing=[], cache_hits=cache_hits))
                return TickOutcome.CACHED

            if not self.rate_limiter.can_dispatch():
                logger.debug("Request window exhausted; deferring dispatch.")
                return TickOutcome.THROTTLED

            requests = [EnrichmentRequest.from_item(item) for item in misses]
            batch = misses[: self.client.max_batch_size(requests, len(requests))]
            return await self._dispatch(batch, manual=False, cache_hits=cache_hits)
        finally:
            self._busy = False

    async def enrich_item(self, item_id: ItemId) -> CatalogItem:
        """Manually re-enriches one item, bypassing the batch selection and the cache.

        Raises:
            DispatchRefusedError: A dispatch is in flight, the limiter is in
                cooldown or the request window is exhausted. Not retried.
            ItemNotFoundError: No item has that id.
        """
        if self._busy:
            raise DispatchRefusedError("Another enrichment is already in progress.")
        if self.rate_limiter.is_in_cooldown():
            remaining = format_cooldown(self.rate_limiter.cooldown_remaining())
            raise DispatchRefusedError(f"Rate limit cooldown active ({remaining} left).")
        if not self.rate_limiter.can_dispatch():
            raise DispatchRefusedError("Request limit for this minute reached.")
        self._busy = True
        try:
            item = await self.item_store.get_item(item_id)
            if item is None:
                raise ItemNotFoundError(item_id)
            await self._dispatch([item], manual=True)
            return await self.item_store.get_item(item_id) or item
        finally:
            self._busy = False

    async def _apply_cached(self, candidates: List[CatalogItem]) -> List[str]:
        if self.cache is None:
            return []
        resolved = []
        for item in candidates:
            cached = self.cache.get(make_enrichment_key(item.url))
            if cached is None:
                continue
            try:
                result = EnrichmentResult.from_dict(cached)
            except (AttributeError, TypeError) as e:
                logger.warning(f"Ignoring unusable cache entry for {item.url}: {e}")
                continue
            if await self._save(merge_result(item, result)):
                resolved.append(item.id)
        if resolved:
            logger.info(f"Resolved {len(resolved)} item(s) from cache.")
        return resolved

    async def _save(self, item: CatalogItem) -> bool:
        try:
            await self.item_store.update_item(item)
            return True
        except ItemNotFoundError:
            logger.info(f"Item {item.id} was deleted during enrichment; skipping.")
            return False

    async def _dispatch(
        self,
        batch: List[CatalogItem],
        manual: bool,
        cache_hits: Optional[List[str]] = None,
    ) -> TickOutcome:
        # Write-before-call: a crash mid-call leaves visible "processing" state
        claimed: List[CatalogItem] = []
        for item in batch:
            processing = item.with_status(ProcessingStatus.PROCESSING)
            if await self._save(processing):
                claimed.append(processing)
        if not claimed:
            return TickOutcome.IDLE

        self.rate_limiter.record_dispatch()
        ids = [item.id for item in claimed]
        logger.info(f"Dispatching {'manual ' if manual else ''}batch of {len(claimed)} item(s): {ids}")
        self._emit(BatchDispatched(item_ids=list(ids), manual=manual))

        try:
            results = await self.client.enrich_batch([EnrichmentRequest.from_item(i) for i in claimed])
        except Exception as e:
            await self._handle_failure(claimed, e)
            return TickOutcome.FAILED

        await self._apply_results(claimed, results, cache_hits or [])
        return TickOutcome.DISPATCHED

    async def _apply_results(
        self,
        claimed: List[CatalogItem],
        results: Dict[ItemId, EnrichmentResult],
        cache_hits: List[str],
    ) -> None:
        now = self.clock()
        updated, soft_failures, missing = [], [], []
        for item in claimed:
            result = results.get(item.id)
            if result is None:
                missing.append(item.id)
                await self._save(item.with_status(ProcessingStatus.ERROR, last_error_at=now))
                continue
            if is_soft_failure(result):
                soft_failures.append(item.id)
            else:
                updated.append(item.id)
                if self.cache is not None:
                    self.cache.set(make_enrichment_key(item.url), result.to_dict())
            await self._save(merge_result(item, result))

        if missing:
            logger.warning(f"Provider omitted {len(missing)} item(s): {missing}")
        self.rate_limiter.record_success()
        if self.delay > self.settings.min_delay_seconds:
            self._set_delay(self.settings.min_delay_seconds, "batch succeeded")
        self._emit(BatchCompleted(updated=updated, soft_failures=soft_failures, missing=missing, cache_hits=cache_hits))

    async def _handle_failure(self, claimed: List[CatalogItem], error: Exception) -> None:
        quota = is_quota_error(error)
        was_in_cooldown = self.rate_limiter.state.is_in_cooldown
        state = self.rate_limiter.record_failure(quota)
        now = self.clock()
        ids = [item.id for item in claimed]

        if quota:
            logger.warning(f"Batch hit provider quota ({error}); {len(ids)} item(s) re-queued.")
        else:
            logger.error(f"Batch enrichment failed: {type(error).__name__}: {error}")

        for item in claimed:
            if quota:
                reverted = item.with_status(ProcessingStatus.QUEUED)
            else:
                reverted = item.with_status(ProcessingStatus.ERROR, last_error_at=now)
            await self._save(reverted)

        if not quota:
            self._set_delay(min(self.delay * 2, self.settings.max_delay_seconds), "non-quota failure")
        if state.is_in_cooldown and not was_in_cooldown:
            self._emit(CooldownEntered(cooldown_until=state.cooldown_until, consecutive_errors=state.consecutive_errors))
        self._emit(BatchFailed(
            item_ids=list(ids),
            error_type=type(error).__name__,
            error_message=str(error),
            quota_related=quota,
        ))

    # --- Background loop ---

    def _on_store_change(self, items: List[CatalogItem]) -> None:
        if self._wakeup is None:
            return
        now = self.clock()
        if any(self.is_eligible(item, now) for item in items):
            self._wakeup.set()

    async def _wait_for_change(self, timeout: float) -> None:
        if self._wakeup is None:
            await self._sleep(timeout)
            return
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout)
        except asyncio.TimeoutError:
            pass
        finally:
            self._wakeup.clear()

    async def _run_loop(self) -> None:
        logger.info("Enrichment queue started.")
        while not self._stopping:
            await self._sleep(self.delay)
            if self._stopping:
                break
            self._cycle_task = asyncio.create_task(self.tick())
            try:
                # Shielded: stopping the loop never cancels an in-flight provider call
                outcome = await asyncio.shield(self._cycle_task)
            except Exception as e:
                logger.error(f"Enrichment cycle failed, retrying after {self.delay:.0f}s: {e}", exc_info=True)
                continue
            if outcome in (TickOutcome.IDLE, TickOutcome.DISABLED):
                await self._wait_for_change(self.settings.idle_poll_seconds)
            elif outcome is TickOutcome.COOLDOWN:
                await self._sleep(self.rate_limiter.cooldown_remaining())

    def start(self) -> None:
        """Starts the background driver loop (requires a running event loop)."""
        if self._loop_task is not None and not self._loop_task.done():
            return
        self._stopping = False
        self._wakeup = asyncio.Event()
        self._unsubscribe = self.item_store.subscribe(self._on_store_change)
        self._loop_task = asyncio.create_task(self._run_loop())

    async def stop(self) -> None:
        """Stops the loop: a pending delay timer is cancelled, an in-flight dispatch completes."""
        self._stopping = True
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.error(f"Enrichment loop ended with an error: {e}", exc_info=True)
            self._loop_task = None
        if self._cycle_task is not None and not self._cycle_task.done():
            logger.info("Waiting for in-flight enrichment to complete...")
            try:
                await self._cycle_task
            except Exception as e:
                logger.error(f"In-flight enrichment failed: {e}", exc_info=True)
        self._cycle_task = None
        self._wakeup = None
        logger.info("Enrichment queue stopped.")

    async def run_until_idle(self, max_cycles: int = 100, wait_on_cooldown: bool = True) -> TickOutcome:
        """Drains the backlog in the foreground, honouring delays and cooldowns."""
        outcome = TickOutcome.IDLE
        for _ in range(max_cycles):
            outcome = await self.tick()
            if outcome in (TickOutcome.IDLE, TickOutcome.DISABLED):
                break
            if outcome is TickOutcome.COOLDOWN:
                if not wait_on_cooldown:
                    break
                await self._sleep(self.rate_limiter.cooldown_remaining())
                continue
            await self._sleep(self.delay)
        return outcome
