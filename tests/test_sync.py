from __future__ import annotations

import asyncio
import threading

import pytest

from presenter.services.projection import (
    DisplaySettings,
    ProjectionState,
    ProjectionStore,
    ProjectionType,
)
from presenter.services.storage import SnapshotStore
from presenter.services.sync import ProjectorReplica, SyncChannel, SyncMessage


def _text(content: str, reference: str = "") -> ProjectionState:
    return ProjectionState(type=ProjectionType.TEXT, content=content, reference=reference)


@pytest.fixture()
def channel(temp_config) -> SyncChannel:
    return SyncChannel(SnapshotStore(temp_config))


@pytest.fixture()
def store(channel: SyncChannel) -> ProjectionStore:
    return ProjectionStore(publisher=channel.publish)


def test_late_joiner_sees_last_publish(channel: SyncChannel, store: ProjectionStore) -> None:
    for index in range(3):
        store.set_projection(_text(f"slide {index}"))

    replica = ProjectorReplica()
    replica.attach(channel)

    assert replica.revision == 3
    assert replica.snapshot.projection.content == "slide 2"
    assert replica.render().mode == "content"


def test_late_joiner_survives_restart(temp_config, store: ProjectionStore) -> None:
    store.set_projection(_text("persisted", "Salmos 23:1"))

    fresh_channel = SyncChannel(SnapshotStore(temp_config))
    replica = ProjectorReplica()
    replica.attach(fresh_channel)

    assert replica.snapshot.projection.reference == "Salmos 23:1"
    assert fresh_channel.revision == 1


def test_replica_receives_updates_in_order(channel: SyncChannel, store: ProjectionStore) -> None:
    seen = []
    replica = ProjectorReplica()
    channel.attach(lambda message: seen.append(message.revision) or replica.apply(message))

    store.set_projection(_text("a"))
    store.toggle_blackout()
    store.clear_projection()

    assert seen == [1, 2, 3]
    assert replica.snapshot.blackout is True
    assert replica.render().mode == "blackout"


def test_applying_same_message_twice_is_idempotent(channel: SyncChannel, store: ProjectionStore) -> None:
    store.set_projection(_text("a", "ref"))
    message = channel.latest()
    replica = ProjectorReplica()

    assert replica.apply(message) is True
    first = replica.render()
    assert replica.apply(message) is False
    assert replica.render() == first


def test_stale_message_is_ignored(channel: SyncChannel, store: ProjectionStore) -> None:
    store.set_projection(_text("old"))
    old = channel.latest()
    store.set_projection(_text("new"))
    replica = ProjectorReplica()
    replica.attach(channel)

    assert replica.apply(old) is False
    assert replica.snapshot.projection.content == "new"


def test_wire_message_round_trip() -> None:
    message = SyncMessage(
        revision=4,
        snapshot=ProjectionStore(settings=DisplaySettings(font_size=50)).snapshot(),
    )

    wire = message.to_wire()

    assert wire["revision"] == 4
    assert wire["type"] == "IDLE"
    assert SyncMessage.from_wire(wire) == message


def test_render_scales_reference_font(channel: SyncChannel, store: ProjectionStore) -> None:
    store.set_display_settings(DisplaySettings(font_size=100, background_image="bg.png"))
    store.set_projection(_text("body", "ref"))
    replica = ProjectorReplica()
    replica.attach(channel)

    frame = replica.render()

    assert frame.font_size == 100
    assert frame.reference_font_size == pytest.approx(45)
    assert frame.background_image == "bg.png"


def test_blackout_round_trip_restores_frame(channel: SyncChannel, store: ProjectionStore) -> None:
    replica = ProjectorReplica()
    replica.attach(channel)
    store.set_projection(_text("body", "ref"))
    before = replica.render()

    store.toggle_blackout()
    assert replica.render().content == ""
    store.toggle_blackout()

    assert replica.render() == before


def test_failing_listener_does_not_block_others(channel: SyncChannel, store: ProjectionStore) -> None:
    received = []

    def _broken(message):
        raise RuntimeError("surface crashed")

    channel.attach(_broken)
    channel.attach(received.append)

    store.set_projection(_text("still delivered"))

    assert [message.revision for message in received] == [1]


def test_closed_subscription_stops_delivery(channel: SyncChannel, store: ProjectionStore) -> None:
    received = []
    subscription = channel.attach(received.append)
    subscription.close()

    store.set_projection(_text("missed"))

    assert received == []


def test_stream_hydrates_then_follows(channel: SyncChannel, store: ProjectionStore) -> None:
    store.set_projection(_text("before"))

    async def _consume():
        stream = channel.stream()
        first = await stream.__anext__()
        store.set_projection(_text("after"))
        second = await stream.__anext__()
        await stream.aclose()
        return first, second

    first, second = asyncio.run(_consume())

    assert first.snapshot.projection.content == "before"
    assert second.snapshot.projection.content == "after"
    assert second.revision == first.revision + 1


def test_stream_accepts_publishes_from_other_threads(channel: SyncChannel, store: ProjectionStore) -> None:
    async def _consume():
        stream = channel.stream()
        pending = asyncio.ensure_future(stream.__anext__())
        # Let the stream subscribe before publishing.
        await asyncio.sleep(0.01)
        worker = threading.Thread(target=store.set_projection, args=(_text("threaded"),))
        worker.start()
        worker.join()
        message = await asyncio.wait_for(pending, timeout=2)
        await stream.aclose()
        return message

    message = asyncio.run(_consume())

    assert message.snapshot.projection.content == "threaded"


def test_stream_yields_keepalive_when_idle(channel: SyncChannel) -> None:
    async def _consume():
        stream = channel.stream(keepalive=0.01)
        value = await stream.__anext__()
        await stream.aclose()
        return value

    assert asyncio.run(_consume()) is None
