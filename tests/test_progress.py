"""Tests for the push-based progress publisher."""

import asyncio
import json

from panel_migrate.core.migration.progress import ProgressPublisher
from panel_migrate.models.enums import ItemKind, ItemStatus
from panel_migrate.models.migration import ItemSelection


class Recorder:
    def __init__(self, fail_after: int | None = None):
        self.messages: list[dict] = []
        self.fail_after = fail_after

    async def send(self, text: str) -> None:
        if self.fail_after is not None and len(self.messages) >= self.fail_after:
            raise ConnectionResetError("client went away")
        self.messages.append(json.loads(text))


async def test_idle_state_sends_one_snapshot_and_finishes(state):
    recorder = Recorder()

    finished = await ProgressPublisher(state, interval=0.001).publish(recorder.send)

    assert finished is True
    assert recorder.messages == [{"step": "idle", "results": [], "started_at": None, "ended_at": None}]


async def test_streams_until_done_with_incremental_logs(state, conn):
    await state.store_connection(conn)
    await state.begin_run(ItemSelection())
    recorder = Recorder()
    publisher = ProgressPublisher(state, interval=0.005)
    task = asyncio.create_task(publisher.publish(recorder.send))

    await state.add_log("===== Migration started =====")
    await state.add_result(ItemKind.WEBSITE, "blog")
    await asyncio.sleep(0.03)
    await state.finish_result(ItemKind.WEBSITE, "blog", ItemStatus.SUCCESS)
    await state.add_log("===== Migration completed =====")
    await state.finish_run()

    assert await asyncio.wait_for(task, timeout=2) is True

    final = recorder.messages[-1]
    assert final["step"] == "done"
    assert final["results"][0]["status"] == "success"
    assert all(m["step"] == "running" for m in recorder.messages[:-1])

    # Every log line is delivered exactly once across messages
    delivered = [line for m in recorder.messages for line in m.get("new_logs", [])]
    assert [line.split("] ", 1)[1] for line in delivered] == [
        "===== Migration started =====",
        "===== Migration completed =====",
    ]


async def test_concurrent_reset_ends_stream(state, conn):
    await state.store_connection(conn)
    recorder = Recorder()
    task = asyncio.create_task(ProgressPublisher(state, interval=0.005).publish(recorder.send))

    await asyncio.sleep(0.02)
    assert not task.done()
    await state.reset()

    assert await asyncio.wait_for(task, timeout=2) is True
    assert recorder.messages[0]["step"] == "precheck"
    assert recorder.messages[-1]["step"] == "idle"


async def test_send_failure_stops_publisher(state, conn):
    await state.store_connection(conn)
    await state.begin_run(ItemSelection())
    recorder = Recorder(fail_after=2)

    finished = await asyncio.wait_for(
        ProgressPublisher(state, interval=0.001).publish(recorder.send), timeout=2
    )

    assert finished is False
    assert len(recorder.messages) == 2
