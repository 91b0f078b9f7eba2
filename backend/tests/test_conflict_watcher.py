import anyio
import pytest

from app.services.conflict_resolution import ConflictCounts
from app.services.conflict_watcher import ChangeEvent, ConflictCountSnapshot, ConflictWatcher
from app.services.notification_hub import SUPERVISOR_CHANNEL, NotificationHub


class CountSource:
    def __init__(self) -> None:
        self.counts = ConflictCounts(pending=0, queued=0)
        self.reads = 0

    def __call__(self) -> ConflictCounts:
        self.reads += 1
        return self.counts


class Recorder:
    def __init__(self) -> None:
        self.snapshots: list[ConflictCountSnapshot] = []

    async def __call__(self, snapshot: ConflictCountSnapshot) -> None:
        self.snapshots.append(snapshot)


async def _wait_for(predicate, timeout: float = 2.0) -> None:
    with anyio.fail_after(timeout):
        while not predicate():
            await anyio.sleep(0.01)


@pytest.mark.anyio
async def test_refresh_notifies_only_when_counts_change():
    source = CountSource()
    recorder = Recorder()
    watcher = ConflictWatcher(source, interval_seconds=60)
    watcher.subscribe(recorder)

    await watcher.refresh()
    await watcher.refresh()
    assert len(recorder.snapshots) == 1

    source.counts = ConflictCounts(pending=2, queued=1)
    snapshot = await watcher.refresh()
    assert snapshot.total == 3
    assert [(item.pending, item.queued) for item in recorder.snapshots] == [(0, 0), (2, 1)]
    assert watcher.latest is snapshot


@pytest.mark.anyio
async def test_unsubscribed_callback_is_not_called():
    source = CountSource()
    recorder = Recorder()
    watcher = ConflictWatcher(source, interval_seconds=60)
    watcher.subscribe(recorder)
    watcher.subscribe(recorder)
    watcher.unsubscribe(recorder)

    await watcher.refresh()
    assert recorder.snapshots == []


@pytest.mark.anyio
async def test_start_reads_once_and_change_event_wakes_watcher():
    source = CountSource()
    recorder = Recorder()
    watcher = ConflictWatcher(source, interval_seconds=60)
    watcher.subscribe(recorder)

    await watcher.start()
    try:
        assert watcher.running
        await _wait_for(lambda: len(recorder.snapshots) == 1)

        source.counts = ConflictCounts(pending=1, queued=0)
        watcher.publish(ChangeEvent(table="conflicts", op="insert"))
        await _wait_for(lambda: len(recorder.snapshots) == 2)
        assert recorder.snapshots[-1].pending == 1

        reads = source.reads
        watcher.handle_event(ChangeEvent(table="bookings", op="update"))
        await anyio.sleep(0.05)
        assert source.reads == reads
    finally:
        await watcher.stop()

    assert not watcher.running


@pytest.mark.anyio
async def test_polling_picks_up_changes_without_events():
    source = CountSource()
    recorder = Recorder()
    watcher = ConflictWatcher(source, interval_seconds=0.02)
    watcher.subscribe(recorder)

    await watcher.start()
    try:
        await _wait_for(lambda: len(recorder.snapshots) == 1)
        source.counts = ConflictCounts(pending=0, queued=4)
        await _wait_for(lambda: len(recorder.snapshots) == 2)
    finally:
        await watcher.stop()


@pytest.mark.anyio
async def test_failing_subscriber_does_not_stop_others():
    source = CountSource()
    recorder = Recorder()

    async def broken(snapshot: ConflictCountSnapshot) -> None:
        raise RuntimeError("socket closed")

    watcher = ConflictWatcher(source, interval_seconds=60)
    watcher.subscribe(broken)
    watcher.subscribe(recorder)

    await watcher.refresh()
    assert len(recorder.snapshots) == 1


@pytest.mark.anyio
async def test_publish_before_start_is_ignored():
    watcher = ConflictWatcher(CountSource(), interval_seconds=60)
    watcher.publish(ChangeEvent(table="conflicts", op="update"))
    await watcher.stop()
    assert watcher.latest is None


class FakeSocket:
    def __init__(self) -> None:
        self.accepted = False
        self.sent: list[dict] = []

    async def accept(self) -> None:
        self.accepted = True

    async def send_json(self, payload: dict) -> None:
        self.sent.append(payload)


@pytest.mark.anyio
async def test_hub_broadcasts_count_to_supervisor_channel():
    hub = NotificationHub()
    socket = FakeSocket()
    await hub.connect(SUPERVISOR_CHANNEL, socket)
    assert socket.accepted
    assert hub.connection_count(SUPERVISOR_CHANNEL) == 1

    await hub.publish_conflict_count(ConflictCountSnapshot(pending=3, queued=1))
    assert socket.sent[0]["event"] == "conflicts.count"
    assert (socket.sent[0]["pending"], socket.sent[0]["queued"]) == (3, 1)

    await hub.disconnect(SUPERVISOR_CHANNEL, socket)
    assert hub.connection_count(SUPERVISOR_CHANNEL) == 0
