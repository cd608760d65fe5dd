from __future__ import annotations

import asyncio

import pytest

from presenter.services.autoplay import END_OF_SEQUENCE_NOTICE, AutoPlayer
from presenter.services.projection import NavigationHandlers, ProjectionStore, ProjectionType
from presenter.services.sequences import project_unit


def _wait_until_stopped(player: AutoPlayer, timeout: float = 2.0):
    async def _wait():
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while player.running and loop.time() < deadline:
            await asyncio.sleep(0.005)

    return _wait()


def test_autoplay_runs_to_the_end_of_the_sequence() -> None:
    store = ProjectionStore()
    project_unit(store, ["a", "b", "c"], 0, projection_type=ProjectionType.LYRIC)
    player = AutoPlayer(store, interval=0.01)

    async def _run():
        assert await player.start() is True
        await _wait_until_stopped(player)

    asyncio.run(_run())

    assert store.current_projection.content == "c"
    assert player.ticks == 2
    assert player.running is False
    assert player.notice == END_OF_SEQUENCE_NOTICE


def test_autoplay_refuses_to_start_without_sequence() -> None:
    player = AutoPlayer(ProjectionStore(), interval=0.01)

    assert asyncio.run(player.start()) is False
    assert player.notice == END_OF_SEQUENCE_NOTICE


def test_autoplay_stop_cancels_timer() -> None:
    store = ProjectionStore()
    project_unit(store, ["a", "b", "c"], 0, projection_type=ProjectionType.LYRIC)
    player = AutoPlayer(store, interval=10)

    async def _run():
        await player.start()
        assert player.running
        await player.stop()

    asyncio.run(_run())

    assert player.running is False
    assert store.current_projection.content == "a"


def test_autoplay_stops_when_handler_fails() -> None:
    store = ProjectionStore()

    def _explode():
        raise RuntimeError("boom")

    store.set_navigation_handlers(NavigationHandlers(advance=_explode))
    player = AutoPlayer(store, interval=0.01)

    async def _run():
        await player.start()
        await _wait_until_stopped(player)

    asyncio.run(_run())

    assert player.running is False
    assert player.notice == "Autoplay stopped after an error"


def test_autoplay_interval_must_be_positive() -> None:
    player = AutoPlayer(ProjectionStore())

    with pytest.raises(ValueError):
        player.interval = 0

    player.interval = 2.5
    assert player.status()["interval"] == 2.5
