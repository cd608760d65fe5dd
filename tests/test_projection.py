from __future__ import annotations

import pytest

from presenter.services.projection import (
    DisplaySettings,
    NavigationHandlers,
    ProjectionSnapshot,
    ProjectionState,
    ProjectionStore,
    ProjectionType,
)
from presenter.services.sequences import project_unit


@pytest.fixture()
def published():
    return []


@pytest.fixture()
def store(published) -> ProjectionStore:
    return ProjectionStore(publisher=published.append)


def test_store_starts_idle(store: ProjectionStore) -> None:
    assert store.current_projection == ProjectionState.idle()
    assert store.blackout is False
    assert store.navigation_handlers.advance is None
    assert store.navigation_handlers.retreat is None


def test_replicated_writes_publish_full_snapshot(store: ProjectionStore, published) -> None:
    state = ProjectionState(type=ProjectionType.TEXT, content="No princípio", reference="Gênesis 1:1")

    store.set_projection(state)
    store.toggle_blackout()
    store.update_display_settings(font_size=80)

    assert len(published) == 3
    assert published[0].projection == state
    assert published[1].blackout is True
    assert published[2] == ProjectionSnapshot(
        projection=state,
        settings=DisplaySettings(font_size=80),
        blackout=True,
    )


def test_navigation_handlers_are_never_published(store: ProjectionStore, published) -> None:
    store.set_navigation_handlers(NavigationHandlers(advance=lambda: None))
    store.set_navigation_handlers(None)

    assert published == []


def test_three_item_sequence_exhausts_advance(store: ProjectionStore) -> None:
    project_unit(store, ["a", "b", "c"], 0, projection_type=ProjectionType.LYRIC)

    assert store.advance() is True
    assert store.advance() is True

    handlers = store.navigation_handlers
    assert handlers.advance is None
    assert handlers.retreat is not None
    assert store.current_projection.content == "c"
    assert store.advance() is False


def test_clear_projection_resets_handlers(store: ProjectionStore) -> None:
    project_unit(store, ["a", "b", "c"], 1, projection_type=ProjectionType.LYRIC)
    assert store.navigation_handlers.advance is not None

    store.clear_projection()

    assert store.current_projection.type is ProjectionType.IDLE
    assert store.navigation_handlers.advance is None
    assert store.navigation_handlers.retreat is None
    assert store.retreat() is False


def test_blackout_does_not_touch_projection(store: ProjectionStore) -> None:
    state = ProjectionState(type=ProjectionType.LYRIC, content="Estrofe", reference="1. Hino")
    store.set_projection(state)
    before = store.snapshot()

    assert store.toggle_blackout() is True
    assert store.current_projection == state
    assert store.toggle_blackout() is False

    assert store.snapshot() == before


def test_setting_new_handlers_replaces_pair(store: ProjectionStore) -> None:
    calls = []
    store.set_navigation_handlers(
        NavigationHandlers(advance=lambda: calls.append("a"), retreat=lambda: calls.append("r"))
    )
    store.set_navigation_handlers(NavigationHandlers(advance=lambda: calls.append("b")))

    store.advance()

    assert calls == ["b"]
    assert store.navigation_handlers.retreat is None


def test_idle_state_cannot_carry_content() -> None:
    with pytest.raises(ValueError):
        ProjectionState(type=ProjectionType.IDLE, content="stray")


def test_state_accepts_type_names() -> None:
    assert ProjectionState(type="TEXT", content="x").type is ProjectionType.TEXT


def test_display_settings_require_positive_font() -> None:
    with pytest.raises(ValueError):
        DisplaySettings(font_size=0)


def test_message_uses_wire_keys() -> None:
    snapshot = ProjectionSnapshot(
        projection=ProjectionState(type=ProjectionType.TEXT, content="c", reference="r"),
        settings=DisplaySettings(font_size=48, background_image="https://example.test/bg.jpg"),
        blackout=False,
    )

    message = snapshot.to_message()

    assert message == {
        "type": "TEXT",
        "content": "c",
        "reference": "r",
        "fontSize": 48,
        "backgroundImage": "https://example.test/bg.jpg",
        "blackout": False,
    }
    assert ProjectionSnapshot.from_message(message) == snapshot
