"""Queue replay against the report store."""

import asyncio

import pytest

from inspection_sync.models.enums import MutationKind
from inspection_sync.services.sync import MAX_RETRIES_EXCEEDED, QueueReplayer


def payload(item_id: str, value: str = "pass") -> dict:
    return {
        "report_id": "report-1",
        "template_item_id": item_id,
        "item_label": item_id,
        "item_type": "pass_fail",
        "response_value": value,
        "severity": None,
        "notes": None,
    }


@pytest.fixture
def replayer(queue, reports, connectivity):
    return QueueReplayer(queue, reports, connectivity, max_retries=3)


async def test_replay_applies_in_order_and_empties_queue(replayer, queue, reports):
    await queue.enqueue(MutationKind.RESPONSE, payload("item-door", "fail"))
    await queue.enqueue(MutationKind.RESPONSE, payload("item-notes", "Gate open"))
    await queue.enqueue(MutationKind.RESPONSE, payload("item-door", "pass"))

    summary = await replayer.process_queue()

    assert summary.applied == 3
    assert summary.failed == 0
    assert [u.template_item_id for u in reports.upserts] == ["item-door", "item-notes", "item-door"]
    assert reports.responses[("report-1", "item-door")].response_value == "pass"
    assert await queue.count() == 0
    assert replayer.last_sync is not None


async def test_replaying_the_same_mutation_twice_is_idempotent(replayer, queue, reports):
    await queue.enqueue(MutationKind.RESPONSE, payload("item-door"))
    await queue.enqueue(MutationKind.RESPONSE, payload("item-door"))

    await replayer.process_queue()

    assert len(reports.upserts) == 2
    assert list(reports.responses) == [("report-1", "item-door")]


async def test_offline_replay_is_skipped(replayer, queue, reports, connectivity):
    await queue.enqueue(MutationKind.RESPONSE, payload("item-door"))
    connectivity.set_online(False)

    summary = await replayer.process_queue()

    assert summary.skipped_offline is True
    assert summary.applied == 0
    assert reports.upserts == []
    assert await queue.count() == 1


async def test_failures_stay_queued_with_retry_count(replayer, queue, reports):
    entry = await queue.enqueue(MutationKind.RESPONSE, payload("item-door"))
    reports.fail_upserts = True

    for _ in range(2):
        summary = await replayer.process_queue()
        assert summary.failed == 1

    [pending] = await queue.list_pending()
    assert pending.id == entry.id
    assert pending.retry_count == 2
    assert MAX_RETRIES_EXCEEDED not in pending.last_error
    assert replayer.last_sync is None


async def test_max_retries_is_flagged_but_kept(replayer, queue, reports):
    await queue.enqueue(MutationKind.RESPONSE, payload("item-door"))
    reports.fail_upserts = True

    for _ in range(3):
        await replayer.process_queue()

    [pending] = await queue.list_pending()
    assert pending.retry_count == 3
    assert pending.last_error.startswith(MAX_RETRIES_EXCEEDED)

    reports.fail_upserts = False
    summary = await replayer.process_queue()
    assert summary.applied == 1
    assert await queue.count() == 0


async def test_invalid_payload_is_recorded_as_failure(replayer, queue):
    await queue.enqueue(MutationKind.RESPONSE, {"report_id": "report-1", "severity": "extreme"})

    summary = await replayer.process_queue()

    assert summary.failed == 1
    [pending] = await queue.list_pending()
    assert pending.last_error == "Invalid payload"


async def test_sync_status(replayer, queue):
    await queue.enqueue(MutationKind.RESPONSE, payload("item-door"))

    status = await replayer.sync_status()

    assert status.is_syncing is False
    assert status.pending_items == 1
    assert status.last_sync is None


async def test_auto_sync_on_reconnect(replayer, queue, reports, connectivity):
    connectivity.set_online(False)
    await queue.enqueue(MutationKind.RESPONSE, payload("item-door"))
    unsubscribe = replayer.start_auto_sync()

    connectivity.set_online(True)
    await replayer.wait_idle()

    assert await queue.count() == 0
    assert reports.responses[("report-1", "item-door")].response_value == "pass"

    unsubscribe()
    connectivity.set_online(False)
    await queue.enqueue(MutationKind.RESPONSE, payload("item-notes"))
    connectivity.set_online(True)
    await replayer.wait_idle()
    assert await queue.count() == 1


async def test_session_queue_is_drained_by_replay(controller, connectivity, queue, reports):
    result = await controller.start_inspection("org-1", "rec-1", "tpl-1", "user-1")
    controller.set_response("item-door", "fail")
    connectivity.set_online(False)
    await controller.save_responses()
    assert await queue.count(result.report_id) == 1

    connectivity.set_online(True)
    summary = await QueueReplayer(queue, reports, connectivity).process_queue()

    assert summary.applied == 1
    assert reports.responses[(result.report_id, "item-door")].response_value == "fail"


async def test_online_save_during_replay_is_not_overwritten(controller, connectivity, queue, reports):
    result = await controller.start_inspection("org-1", "rec-1", "tpl-1", "user-1")
    report_id = result.report_id
    controller.set_response("item-door", "fail")
    controller.set_response("item-notes", "Gate open")
    connectivity.set_online(False)
    await controller.save_responses()
    assert await queue.count(report_id) == 2
    connectivity.set_online(True)

    release = asyncio.Event()
    reports.hold_next_upsert = release
    replay = asyncio.create_task(QueueReplayer(queue, reports, connectivity).process_queue())
    await reports.upsert_held.wait()

    controller.set_response("item-door", "pass")
    save = asyncio.create_task(controller.save_responses())
    done, _ = await asyncio.wait({save}, timeout=0.2)
    # The save waits for the in-flight replay of the older value
    assert not done

    release.set()
    summary = await replay
    await save

    assert reports.responses[(report_id, "item-door")].response_value == "pass"
    assert reports.responses[(report_id, "item-notes")].response_value == "Gate open"
    assert summary.applied == 1
    assert await queue.count() == 0
