import asyncio
from dataclasses import replace

import pytest

from helpers import FakeProvider, ok_result, results_payload
from linkhub.core.services.batch_enrichment import BatchEnrichmentClient
from linkhub.core.services.queue_scheduler import QueueScheduler, TickOutcome
from linkhub.domain.events.queue_events import (
    BatchCompleted,
    BatchDispatched,
    BatchFailed,
    CooldownEntered,
    DelayAdjusted,
)
from linkhub.domain.models.ai import ModelRoute
from linkhub.domain.models.catalog import PLACEHOLDER_DESCRIPTION, ProcessingStatus
from linkhub.domain.models.errors import (
    DispatchRefusedError,
    ItemNotFoundError,
    MalformedResponseError,
    QuotaExceededError,
)
from linkhub.infrastructure.cache.result_cache import make_enrichment_key
from linkhub.infrastructure.resilience.model_rotation import ModelRotation
from linkhub.infrastructure.storage.item_store import InMemoryItemStore

DESCRIBED = "Passive DNS and certificate search"


class RecordingSleep:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)
        await asyncio.sleep(0)


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def scheduler(item_store, batch_client, rate_limiter, queue_settings, result_cache, clock, sleep):
    return QueueScheduler(
        item_store=item_store,
        client=batch_client,
        rate_limiter=rate_limiter,
        settings=queue_settings,
        cache=result_cache,
        clock=clock,
        sleep=sleep,
    )


def seed(store, *items):
    async def add_all():
        for item in items:
            await store.add_item(item)
    asyncio.run(add_all())
    return list(items)


def statuses(store):
    return [i.processing_status for i in asyncio.run(store.list_items())]


def get(store, item_id):
    return asyncio.run(store.get_item(item_id))


# --- Eligibility ---

def test_eligibility_respects_error_grace_period(scheduler, item_store, make_item, clock):
    pending = make_item()
    old_error = make_item(ProcessingStatus.ERROR, description=DESCRIBED, last_error_at=clock() - 600)
    recent_error = make_item(ProcessingStatus.ERROR, description=DESCRIBED, last_error_at=clock() - 60)
    seed(item_store, pending, old_error, recent_error)

    eligible = asyncio.run(scheduler.eligible_items())

    assert [i.id for i in eligible] == [pending.id, old_error.id]


def test_error_without_usable_description_is_always_eligible(scheduler, make_item, clock):
    item = make_item(ProcessingStatus.ERROR, last_error_at=clock())
    assert item.description == PLACEHOLDER_DESCRIPTION
    assert scheduler.is_eligible(item, clock()) is True


@pytest.mark.parametrize("status", [ProcessingStatus.PROCESSING, ProcessingStatus.DONE])
def test_processing_and_done_items_are_never_selected(scheduler, make_item, clock, status):
    assert scheduler.is_eligible(make_item(status), clock()) is False


# --- Successful dispatch ---

def test_tick_enriches_first_batch_in_listing_order(scheduler, item_store, make_item, provider, rate_limiter):
    items = seed(item_store, *[make_item() for _ in range(5)])

    outcome = asyncio.run(scheduler.tick())

    assert outcome is TickOutcome.DISPATCHED
    assert len(provider.calls) == 1
    assert statuses(item_store) == [ProcessingStatus.DONE] * 3 + [ProcessingStatus.PENDING] * 2
    enriched = get(item_store, items[0].id)
    assert enriched.category == "OSINT"
    assert enriched.tags == ["recon", "iot"]
    assert rate_limiter.state.requests_this_window == 1
    assert scheduler.delay == 4


def test_items_are_marked_processing_before_the_call(item_store, rate_limiter, queue_settings, clock, make_item):
    seen_during_call = []

    class InspectingProvider(FakeProvider):
        async def complete_json(self, prompt, model, system_prompt=None):
            seen_during_call.extend(i.processing_status for i in await item_store.list_items())
            return await super().complete_json(prompt, model, system_prompt)

    client = BatchEnrichmentClient({"groq": InspectingProvider()}, ModelRotation([ModelRoute("groq", "m1")]))
    scheduler = QueueScheduler(item_store, client, rate_limiter, queue_settings, clock=clock)
    seed(item_store, make_item(), make_item())

    asyncio.run(scheduler.tick())

    assert seen_during_call == [ProcessingStatus.PROCESSING, ProcessingStatus.PROCESSING]


def test_omitted_items_become_errors(scheduler, item_store, make_item, provider, clock):
    first, second = seed(item_store, make_item(), make_item())
    provider.answers = [results_payload(ok_result(first.id))]

    asyncio.run(scheduler.tick())

    assert get(item_store, first.id).processing_status is ProcessingStatus.DONE
    missing = get(item_store, second.id)
    assert missing.processing_status is ProcessingStatus.ERROR
    assert missing.last_error_at == clock()


def test_soft_failure_keeps_placeholders_and_is_not_cached(scheduler, item_store, make_item, provider, result_cache):
    (item,) = seed(item_store, make_item())
    provider.answers = [results_payload({"id": item.id, "status": "unknown", "description": "?", "category": "Error"})]

    asyncio.run(scheduler.tick())

    stored = get(item_store, item.id)
    assert stored.processing_status is ProcessingStatus.DONE
    assert stored.description == PLACEHOLDER_DESCRIPTION
    assert result_cache.get(make_enrichment_key(item.url)) is None


def test_authoritative_results_are_cached(scheduler, item_store, make_item, result_cache):
    (item,) = seed(item_store, make_item())
    asyncio.run(scheduler.tick())
    assert result_cache.get(make_enrichment_key(item.url))["category"] == "OSINT"


def test_cache_hits_skip_the_provider_and_the_rate_limit(scheduler, item_store, make_item, provider,
                                                         result_cache, rate_limiter):
    (item,) = seed(item_store, make_item())
    result_cache.set(make_enrichment_key(item.url), {"description": DESCRIBED, "category": "DNS", "tags": ["dns"]})

    outcome = asyncio.run(scheduler.tick())

    assert outcome is TickOutcome.CACHED
    assert provider.calls == []
    assert rate_limiter.state.requests_this_window == 0
    stored = get(item_store, item.id)
    assert stored.processing_status is ProcessingStatus.DONE
    assert stored.description == DESCRIBED


# --- Failures ---

def test_quota_error_requeues_whole_batch_and_starts_cooldown(scheduler, item_store, make_item, provider,
                                                               rate_limiter):
    seed(item_store, make_item(), make_item(), make_item())
    provider.answers = [QuotaExceededError("429", status_code=429), QuotaExceededError("429", status_code=429)]
    before_errors = rate_limiter.state.consecutive_errors

    outcome = asyncio.run(scheduler.tick())

    assert outcome is TickOutcome.FAILED
    items = asyncio.run(item_store.list_items())
    assert [i.processing_status for i in items] == [ProcessingStatus.QUEUED] * 3
    assert all(i.last_error_at is None for i in items)
    assert rate_limiter.state.consecutive_errors == before_errors + 1
    assert rate_limiter.state.is_in_cooldown is True
    assert rate_limiter.state.requests_this_window == 1
    assert scheduler.delay == 6


def test_no_dispatch_and_no_mutation_during_cooldown(scheduler, item_store, make_item, provider, rate_limiter):
    seed(item_store, make_item(), make_item())
    rate_limiter.record_failure(is_quota_error=True)
    before = asyncio.run(item_store.list_items())

    outcome = asyncio.run(scheduler.tick())

    assert outcome is TickOutcome.COOLDOWN
    assert provider.calls == []
    assert asyncio.run(item_store.list_items()) == before


def test_dispatch_resumes_after_cooldown(scheduler, item_store, make_item, rate_limiter, clock):
    seed(item_store, make_item())
    rate_limiter.record_failure(is_quota_error=True)
    clock.advance(60)
    assert asyncio.run(scheduler.tick()) is TickOutcome.DISPATCHED
    assert rate_limiter.state.consecutive_errors == 0


def test_non_quota_failure_marks_errors_and_backs_off(scheduler, item_store, make_item, provider, clock):
    (item,) = seed(item_store, make_item())
    provider.answers = ["this is not json"]

    outcome = asyncio.run(scheduler.tick())

    assert outcome is TickOutcome.FAILED
    failed = get(item_store, item.id)
    assert failed.processing_status is ProcessingStatus.ERROR
    assert failed.last_error_at == clock()
    assert scheduler.delay == 12


def test_backoff_stays_within_floor_and_ceiling(scheduler, item_store, make_item, provider, rate_limiter):
    seed(item_store, make_item())
    delays = []
    for _ in range(4):
        provider.answers = [MalformedResponseError("bad")]
        asyncio.run(scheduler.tick())
        delays.append(scheduler.delay)
        rate_limiter.reset()
    assert delays == [12, 24, 48, 60]

    asyncio.run(scheduler.tick())
    assert scheduler.delay == 4


def test_five_consecutive_failures_start_cooldown(scheduler, item_store, make_item, provider, rate_limiter):
    seed(item_store, make_item())
    for attempt in range(5):
        provider.answers = [MalformedResponseError("bad")]
        assert asyncio.run(scheduler.tick()) is TickOutcome.FAILED
    assert rate_limiter.state.is_in_cooldown is True
    assert asyncio.run(scheduler.tick()) is TickOutcome.COOLDOWN


def test_window_exhausted_defers_without_mutation(scheduler, item_store, make_item, provider, rate_limiter):
    seed(item_store, make_item())
    for _ in range(15):
        rate_limiter.record_dispatch()
    before = asyncio.run(item_store.list_items())

    assert asyncio.run(scheduler.tick()) is TickOutcome.THROTTLED
    assert provider.calls == []
    assert asyncio.run(item_store.list_items()) == before


def test_item_deleted_during_call_is_skipped(item_store, rate_limiter, queue_settings, clock, make_item):
    class DeletingProvider(FakeProvider):
        async def complete_json(self, prompt, model, system_prompt=None):
            response = await super().complete_json(prompt, model, system_prompt)
            await item_store.delete_item(victim.id)
            return response

    client = BatchEnrichmentClient({"groq": DeletingProvider()}, ModelRotation([ModelRoute("groq", "m1")]))
    scheduler = QueueScheduler(item_store, client, rate_limiter, queue_settings, clock=clock)
    victim, survivor = seed(item_store, make_item(), make_item())

    assert asyncio.run(scheduler.tick()) is TickOutcome.DISPATCHED
    assert [i.id for i in asyncio.run(item_store.list_items())] == [survivor.id]


# --- Guards ---

def test_disabled_scheduler_does_nothing(scheduler, item_store, make_item, provider):
    seed(item_store, make_item())
    scheduler.auto_processing = False
    assert asyncio.run(scheduler.tick()) is TickOutcome.DISABLED
    assert provider.calls == []


def test_idle_when_nothing_is_eligible(scheduler, item_store, make_item):
    seed(item_store, make_item(ProcessingStatus.DONE))
    assert asyncio.run(scheduler.tick()) is TickOutcome.IDLE


def test_tick_while_dispatch_in_flight_is_a_no_op(item_store, rate_limiter, queue_settings, clock, make_item):
    async def scenario():
        release = asyncio.Event()
        called = asyncio.Event()

        class BlockingProvider(FakeProvider):
            async def complete_json(self, prompt, model, system_prompt=None):
                called.set()
                await release.wait()
                return await super().complete_json(prompt, model, system_prompt)

        client = BatchEnrichmentClient({"groq": BlockingProvider()}, ModelRotation([ModelRoute("groq", "m1")]))
        scheduler = QueueScheduler(item_store, client, rate_limiter, queue_settings, clock=clock)
        for _ in range(4):
            await item_store.add_item(make_item())

        first = asyncio.create_task(scheduler.tick())
        await called.wait()
        second = await scheduler.tick()
        with pytest.raises(DispatchRefusedError):
            await scheduler.enrich_item((await item_store.list_items())[3].id)
        release.set()
        return second, await first

    second, first = asyncio.run(scenario())
    assert second is TickOutcome.BUSY
    assert first is TickOutcome.DISPATCHED
    assert rate_limiter.state.requests_this_window == 1


# --- Manual enrichment ---

def test_enrich_item_bypasses_cache_reads(scheduler, item_store, make_item, provider, result_cache, rate_limiter):
    (item,) = seed(item_store, make_item(ProcessingStatus.DONE, description=DESCRIBED))
    result_cache.set(make_enrichment_key(item.url), {"description": "stale cached text", "category": "Old"})

    enriched = asyncio.run(scheduler.enrich_item(item.id))

    assert len(provider.calls) == 1
    assert enriched.processing_status is ProcessingStatus.DONE
    assert enriched.description == "Search engine for Internet-connected devices"
    assert rate_limiter.state.requests_this_window == 1
    assert result_cache.get(make_enrichment_key(item.url))["category"] == "OSINT"


def test_enrich_item_refused_during_cooldown(scheduler, item_store, make_item, provider, rate_limiter):
    (item,) = seed(item_store, make_item())
    rate_limiter.record_failure(is_quota_error=True)
    with pytest.raises(DispatchRefusedError, match="cooldown"):
        asyncio.run(scheduler.enrich_item(item.id))
    assert provider.calls == []
    assert get(item_store, item.id) == item


def test_enrich_item_refused_when_window_exhausted(scheduler, item_store, make_item, rate_limiter):
    (item,) = seed(item_store, make_item())
    for _ in range(15):
        rate_limiter.record_dispatch()
    with pytest.raises(DispatchRefusedError):
        asyncio.run(scheduler.enrich_item(item.id))


def test_enrich_item_unknown_id(scheduler):
    with pytest.raises(ItemNotFoundError):
        asyncio.run(scheduler.enrich_item("missing"))
    assert scheduler.busy is False


def test_enrich_item_quota_failure_requeues(scheduler, item_store, make_item, provider):
    (item,) = seed(item_store, make_item())
    provider.answers = [QuotaExceededError("429"), QuotaExceededError("429")]
    result = asyncio.run(scheduler.enrich_item(item.id))
    assert result.processing_status is ProcessingStatus.QUEUED


# --- Events ---

def test_events_for_successful_batch(scheduler, item_store, make_item):
    events = []
    scheduler.add_listener(events.append)
    seed(item_store, make_item())

    asyncio.run(scheduler.tick())

    kinds = [type(e) for e in events]
    assert kinds == [BatchDispatched, DelayAdjusted, BatchCompleted]
    assert events[1].previous_seconds == 6 and events[1].current_seconds == 4
    assert len(events[2].updated) == 1


def test_events_for_quota_failure(scheduler, item_store, make_item, provider):
    events = []
    scheduler.add_listener(events.append)
    seed(item_store, make_item())
    provider.answers = [QuotaExceededError("429"), QuotaExceededError("429")]

    asyncio.run(scheduler.tick())

    assert [type(e) for e in events] == [BatchDispatched, CooldownEntered, BatchFailed]
    assert events[2].quota_related is True


def test_failing_listener_does_not_break_the_cycle(scheduler, item_store, make_item):
    def broken(event):
        raise RuntimeError("listener bug")

    scheduler.add_listener(broken)
    seed(item_store, make_item())
    assert asyncio.run(scheduler.tick()) is TickOutcome.DISPATCHED


# --- Loop lifecycle ---

def test_run_until_idle_drains_backlog(scheduler, item_store, make_item, provider, sleep):
    seed(item_store, *[make_item() for _ in range(5)])

    outcome = asyncio.run(scheduler.run_until_idle())

    assert outcome is TickOutcome.IDLE
    assert len(provider.calls) == 2
    assert statuses(item_store) == [ProcessingStatus.DONE] * 5
    assert sleep.calls == [4, 4]


def test_run_until_idle_can_stop_at_cooldown(scheduler, item_store, make_item, rate_limiter):
    seed(item_store, make_item())
    rate_limiter.record_failure(is_quota_error=True)
    assert asyncio.run(scheduler.run_until_idle(wait_on_cooldown=False)) is TickOutcome.COOLDOWN


def test_stop_before_timer_fires_has_no_side_effects(item_store, batch_client, rate_limiter, queue_settings,
                                                      clock, make_item, provider):
    async def never(seconds):
        await asyncio.Event().wait()

    scheduler = QueueScheduler(item_store, batch_client, rate_limiter, queue_settings, clock=clock, sleep=never)
    (item,) = seed(item_store, make_item())

    async def scenario():
        scheduler.start()
        await asyncio.sleep(0)
        await scheduler.stop()

    asyncio.run(scenario())
    assert provider.calls == []
    assert get(item_store, item.id) == item


def test_stop_lets_in_flight_dispatch_complete(rate_limiter, queue_settings, clock, make_item):
    store = InMemoryItemStore()

    async def scenario():
        release = asyncio.Event()
        called = asyncio.Event()

        class BlockingProvider(FakeProvider):
            async def complete_json(self, prompt, model, system_prompt=None):
                called.set()
                await release.wait()
                return await super().complete_json(prompt, model, system_prompt)

        async def instant(seconds):
            await asyncio.sleep(0)

        client = BatchEnrichmentClient({"groq": BlockingProvider()}, ModelRotation([ModelRoute("groq", "m1")]))
        scheduler = QueueScheduler(store, client, rate_limiter, queue_settings, clock=clock, sleep=instant)
        await store.add_item(make_item())

        scheduler.start()
        await asyncio.wait_for(called.wait(), timeout=1)
        stopper = asyncio.create_task(scheduler.stop())
        await asyncio.sleep(0)
        assert not stopper.done()
        release.set()
        await asyncio.wait_for(stopper, timeout=1)
        return await store.list_items()

    items = asyncio.run(scenario())
    assert [i.processing_status for i in items] == [ProcessingStatus.DONE]


def test_loop_wakes_up_when_items_are_added(rate_limiter, clock, make_item, queue_settings):
    store = InMemoryItemStore()
    provider = FakeProvider()
    settings = replace(queue_settings, idle_poll_seconds=30)

    async def scenario():
        async def instant(seconds):
            await asyncio.sleep(0)

        client = BatchEnrichmentClient({"groq": provider}, ModelRotation([ModelRoute("groq", "m1")]))
        scheduler = QueueScheduler(store, client, rate_limiter, settings, clock=clock, sleep=instant)
        scheduler.start()
        for _ in range(5):
            await asyncio.sleep(0)
        await store.add_item(make_item())
        for _ in range(100):
            if provider.calls:
                break
            await asyncio.sleep(0.01)
        await scheduler.stop()

    asyncio.run(scenario())
    assert len(provider.calls) == 1


def test_loop_survives_a_failing_cycle(rate_limiter, queue_settings, clock, make_item):
    class FlakyStore(InMemoryItemStore):
        def __init__(self):
            super().__init__()
            self.failures = 1

        async def update_item(self, item):
            if self.failures:
                self.failures -= 1
                raise OSError("disk full")
            await super().update_item(item)

    store = FlakyStore()
    provider = FakeProvider()

    async def scenario():
        async def instant(seconds):
            await asyncio.sleep(0)

        client = BatchEnrichmentClient({"groq": provider}, ModelRotation([ModelRoute("groq", "m1")]))
        scheduler = QueueScheduler(store, client, rate_limiter, queue_settings, clock=clock, sleep=instant)
        await store.add_item(make_item())
        scheduler.start()
        for _ in range(100):
            if provider.calls:
                break
            await asyncio.sleep(0.01)
        loop_alive = not scheduler._loop_task.done()
        await scheduler.stop()
        return loop_alive, await store.list_items()

    loop_alive, items = asyncio.run(scenario())

    assert loop_alive is True
    assert store.failures == 0
    assert len(provider.calls) == 1
    assert [i.processing_status for i in items] == [ProcessingStatus.DONE]


def test_stop_does_not_raise_for_a_crashed_loop(scheduler):
    async def scenario():
        async def crash():
            raise OSError("disk full")

        scheduler._loop_task = asyncio.create_task(crash())
        await asyncio.sleep(0)
        await scheduler.stop()
        return scheduler._loop_task

    assert asyncio.run(scenario()) is None
