"""FastAPI application serving the control and projector surfaces."""

from __future__ import annotations

import contextlib
import contextvars
import json
import logging
import threading
import uuid
from collections import OrderedDict
from collections.abc import Mapping, Sequence, Set as AbstractSet
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Literal, Optional, Tuple, Union

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi import status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, StreamingResponse
from pydantic import BaseModel, Field
from starlette.types import ASGIApp, Receive, Scope, Send

from ..context import PresenterContext
from ..logging_utils import DEFAULT_LOG_FORMAT
from ..services.acquisition import AcquisitionResult, ResourceUnavailable
from ..services.events import (
    APP_EVENT,
    DB_QUERY,
    RESOURCE_FETCH,
    clean_details,
    emit_event,
)
from ..services.normalization import KIND_HYMNAL, KIND_SCRIPTURE, ScriptureBook
from ..services.projection import ProjectionState, ProjectionType
from ..services.resources import UnknownResourceError
from ..services.sequences import project_slide, project_stanza, project_verse
from ..services.sync import SyncMessage
from .pages import CONTROL_HTML, PROJECTOR_HTML, render_page


_DB_SLOW_WARNING_MS = 450.0
_FETCH_SLOW_WARNING_MS = 5000.0
_STREAM_KEEPALIVE_SECONDS = 15.0
_DEFAULT_HYMNAL_ID = "hymnal"


_REQUEST_ID_VAR: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "presenter_tools_request_id",
    default=None,
)
_ACTOR_VAR: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "presenter_tools_actor",
    default=None,
)


def _new_correlation_id() -> str:
    return uuid.uuid4().hex


def _format_actor_label(role: str, detail: Optional[str] = None) -> str:
    base = role.strip() if role else "actor"
    if detail is None:
        return base
    suffix = str(detail).strip()
    return f"{base}:{suffix}" if suffix else base


def _collect_correlation_context() -> Dict[str, str]:
    context: Dict[str, str] = {}
    request_id = _REQUEST_ID_VAR.get()
    if request_id:
        context["request_id"] = str(request_id)
    actor = _ACTOR_VAR.get()
    if actor:
        context["actor"] = str(actor)
    return context


class RequestContextMiddleware:
    """Assign a correlation identifier to each request and expose it via contextvars."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        request_id = _new_correlation_id()
        scope_state = scope.get("state")
        if scope_state is None:
            scope_state = {}
            scope["state"] = scope_state
        if isinstance(scope_state, dict):
            scope_state["request_id"] = request_id
        else:
            setattr(scope_state, "request_id", request_id)

        method = scope.get("method")
        actor_hint = _format_actor_label("request", method.upper() if isinstance(method, str) else None)
        request_token = _REQUEST_ID_VAR.set(request_id)
        actor_token = _ACTOR_VAR.set(actor_hint)

        try:
            await self.app(scope, receive, send)
        finally:
            _ACTOR_VAR.reset(actor_token)
            _REQUEST_ID_VAR.reset(request_token)


class ContextualLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that injects correlation context into records."""

    def process(self, msg: Any, kwargs: Dict[str, Any]) -> tuple[Any, Dict[str, Any]]:  # type: ignore[override]
        extra: Dict[str, Any] = dict(self.extra)
        provided = kwargs.get("extra")
        if isinstance(provided, dict):
            extra.update(provided)
        for key, value in _collect_correlation_context().items():
            extra.setdefault(key, value)
        kwargs["extra"] = extra
        return msg, kwargs


LOGGER = ContextualLoggerAdapter(logging.getLogger(__name__), {})
EVENT_LOGGER = ContextualLoggerAdapter(logging.getLogger("presenter_tools.events"), {})


def _emit_debug_event(
    event_type: str,
    message: str,
    *,
    details: Optional[Mapping[str, Any]] = None,
    duration_ms: Optional[float] = None,
    level: int = logging.INFO,
) -> None:
    emit_event(
        event_type,
        message,
        details=details,
        duration_ms=duration_ms,
        level=level,
        logger=EVENT_LOGGER,
    )


def _log_event(message: str, **details: Any) -> None:
    _emit_debug_event(APP_EVENT, message, details=details)


def _freeze(value: Any) -> Any:
    """Hashable stand-in for *value*, insensitive to mapping order."""

    if isinstance(value, Mapping):
        return tuple(sorted((str(key), _freeze(item)) for key, item in value.items()))
    if isinstance(value, AbstractSet):
        return tuple(sorted((_freeze(item) for item in value), key=repr))
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        return tuple(_freeze(item) for item in value)
    try:
        hash(value)
    except TypeError:
        return repr(value)
    return value


class DebugLogHandler(logging.Handler):
    """In-memory log handler backing ``/api/debug/logs``.

    Records with the same event type, message and details collapse into one
    entry that keeps a count, duration statistics and the latest request id.
    """

    _SLOW_THRESHOLDS_MS: Dict[str, float] = {
        DB_QUERY: _DB_SLOW_WARNING_MS,
        RESOURCE_FETCH: _FETCH_SLOW_WARNING_MS,
    }
    _SEVERITY_RANK: Dict[str, int] = {"error": 2, "warning": 1}

    def __init__(self, capacity: int = 500) -> None:
        super().__init__(level=logging.DEBUG)
        self._capacity = max(1, capacity)
        self._entries: "OrderedDict[Tuple[Any, ...], Dict[str, Any]]" = OrderedDict()
        self._lock = threading.Lock()
        self._last_id = 0
        self.setFormatter(logging.Formatter(DEFAULT_LOG_FORMAT))

    @staticmethod
    def _build_key(event_type: str, message: str, details: Mapping[str, Any]) -> Tuple[Any, ...]:
        return (event_type, message, _freeze(details))

    def _severity(
        self,
        record: logging.LogRecord,
        details: Mapping[str, Any],
        duration_ms: Optional[float],
    ) -> Optional[str]:
        if record.levelno >= logging.ERROR or details.get("status") == "error":
            return "error"
        if record.levelno >= logging.WARNING:
            return "warning"
        threshold = self._SLOW_THRESHOLDS_MS.get(getattr(record, "event_type", ""))
        if threshold is not None and duration_ms is not None and duration_ms >= threshold:
            return "warning"
        return None

    def emit(self, record: logging.LogRecord) -> None:  # noqa: D401 - inherited documentation
        event_type = str(getattr(record, "event_type", "") or record.name)
        message = str(getattr(record, "event_message", None) or record.getMessage())
        raw_details = getattr(record, "event_details", None)
        details = clean_details(raw_details) if isinstance(raw_details, Mapping) else {}
        duration_ms = getattr(record, "event_duration_ms", None)
        severity = self._severity(record, details, duration_ms)
        timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat()
        key = self._build_key(event_type, message, details)

        with self._lock:
            self._last_id += 1
            entry = self._entries.pop(key, None)
            if entry is None:
                entry = {
                    "message": message,
                    "event_type": event_type,
                    "count": 0,
                    "first_seen": timestamp,
                }
                if details:
                    entry["details"] = details
            entry["count"] += 1
            entry.update(
                id=self._last_id,
                last_seen=timestamp,
                level=record.levelname,
                logger=record.name,
            )
            if record.exc_info:
                formatter = self.formatter or logging.Formatter()
                entry["traceback"] = formatter.formatException(record.exc_info)
            for field in ("request_id", "actor"):
                value = getattr(record, field, None)
                if value:
                    entry[field] = str(value)
            if duration_ms is not None:
                total = entry.get("total_duration_ms", 0.0) + duration_ms
                entry["total_duration_ms"] = total
                entry["last_duration_ms"] = duration_ms
                entry["average_duration_ms"] = total / entry["count"]
                entry["max_duration_ms"] = max(entry.get("max_duration_ms", duration_ms), duration_ms)
            previous = self._SEVERITY_RANK.get(entry.get("severity", ""), 0)
            if severity and self._SEVERITY_RANK[severity] >= previous:
                entry["severity"] = severity
            self._entries[key] = entry
            while len(self._entries) > self._capacity:
                self._entries.popitem(last=False)

    def collect(self, after: Optional[int] = None, limit: int = 200) -> List[Dict[str, Any]]:
        with self._lock:
            entries = [dict(entry) for entry in self._entries.values() if entry["id"] > (after or 0)]
        return entries[-limit:]

    @property
    def last_id(self) -> int:
        with self._lock:
            return self._last_id


class ProjectionPayload(BaseModel):
    type: Literal["IDLE", "TEXT", "LYRIC"]
    content: str = ""
    reference: str = ""


class SettingsPayload(BaseModel):
    font_size: Optional[float] = Field(None, gt=0)
    background_image: Optional[str] = None
    autoplay_interval_seconds: Optional[float] = Field(None, gt=0)


class VerseRequest(BaseModel):
    book: Union[int, str]
    chapter: int = Field(..., ge=1)
    verse: int = Field(..., ge=1)


class StanzaRequest(BaseModel):
    stanza: int = Field(0, ge=0)
    resource_id: str = _DEFAULT_HYMNAL_ID


class SlideRequest(BaseModel):
    text: str = Field(..., min_length=1)
    title: str = ""
    index: int = Field(0, ge=0)


def _normalize_root_path(value: Optional[str]) -> str:
    if value is None:
        return ""
    normalized = value.strip()
    if not normalized:
        return ""
    if not normalized.startswith("/"):
        normalized = f"/{normalized}"
    return normalized.rstrip("/")


def _format_sse(message: SyncMessage) -> str:
    data = json.dumps(message.to_wire(), ensure_ascii=False)
    return f"id: {message.revision}\nevent: projection\ndata: {data}\n\n"


def _serialize_result(result: AcquisitionResult, *, include_items: bool) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "id": result.pack.id,
        "kind": result.pack.kind,
        "status": result.status.value,
        "degraded": result.degraded,
        "source": result.source,
        "count": len(result.pack),
    }
    if include_items:
        body["items"] = result.pack.to_payload()
    return body


def _find_book(books: Sequence[Any], selector: Union[int, str]) -> Optional[ScriptureBook]:
    if isinstance(selector, int):
        if 0 <= selector < len(books):
            return books[selector]
        return None
    wanted = selector.strip().lower()
    for book in books:
        if isinstance(book, ScriptureBook) and wanted in {book.abbrev.lower(), book.name.lower()}:
            return book
    return None


def create_app(
    context: PresenterContext,
    *,
    root_path: str | None = None,
) -> FastAPI:
    """Return a configured FastAPI application."""

    normalized_root = _normalize_root_path(root_path)
    autoplay = context.autoplay

    @contextlib.asynccontextmanager
    async def _lifespan(_app: FastAPI) -> AsyncIterator[None]:
        try:
            yield
        finally:
            await autoplay.stop()

    app = FastAPI(
        title="Presenter Tools",
        description="Project scripture, hymns and slides to any screen",
        root_path=normalized_root,
        lifespan=_lifespan,
    )
    app.state.server = None
    app.state.context = context

    def _store_event_emitter(event_type: str, message: str, **kwargs: Any) -> None:
        _emit_debug_event(event_type, message, level=logging.DEBUG, **kwargs)

    context.resource_store.configure_event_emitter(_store_event_emitter)
    context.snapshot_store.configure_event_emitter(_store_event_emitter)

    root_logger = logging.getLogger()
    debug_handler = next(
        (handler for handler in root_logger.handlers if isinstance(handler, DebugLogHandler)),
        None,
    )
    if debug_handler is None:
        debug_handler = DebugLogHandler()
        root_logger.addHandler(debug_handler)
    app.state.debug_log_handler = debug_handler
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    store = context.projection
    channel = context.channel
    library = context.library

    def _resolve_root(request: Request) -> str:
        scope_root = request.scope.get("root_path")
        if isinstance(scope_root, str) and _normalize_root_path(scope_root):
            return _normalize_root_path(scope_root)
        return normalized_root

    def _state_payload() -> Dict[str, Any]:
        handlers = store.navigation_handlers
        return {
            "message": store.snapshot().to_message(),
            "revision": channel.revision,
            "navigation": {
                "canAdvance": handlers.advance is not None,
                "canRetreat": handlers.retreat is not None,
            },
        }

    async def _acquire(resource_id: str, *, force: bool = False) -> AcquisitionResult:
        try:
            return await library.get(resource_id, force=force)
        except UnknownResourceError as error:
            raise HTTPException(status_code=404, detail=f"Unknown resource '{resource_id}'") from error
        except ResourceUnavailable as error:
            LOGGER.warning("Resource %s unavailable: %s", resource_id, error)
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail=str(error),
            ) from error

    @app.get("/", response_class=HTMLResponse)
    async def control_surface(request: Request) -> HTMLResponse:
        return HTMLResponse(render_page(CONTROL_HTML, _resolve_root(request)))

    @app.get("/projector", response_class=HTMLResponse)
    async def projector_surface(request: Request) -> HTMLResponse:
        return HTMLResponse(render_page(PROJECTOR_HTML, _resolve_root(request)))

    @app.get("/api/projection")
    async def get_projection() -> Dict[str, Any]:
        return _state_payload()

    @app.put("/api/projection")
    async def put_projection(payload: ProjectionPayload) -> Dict[str, Any]:
        try:
            state = ProjectionState(
                type=ProjectionType(payload.type),
                content=payload.content,
                reference=payload.reference,
            )
        except ValueError as error:
            raise HTTPException(status_code=400, detail=str(error)) from error
        # An ad-hoc projection ends whatever sequence was being traversed.
        store.set_navigation_handlers(None)
        store.set_projection(state)
        _log_event("Projection set", type=state.type.value, reference=state.reference)
        return _state_payload()

    @app.delete("/api/projection")
    async def delete_projection() -> Dict[str, Any]:
        store.clear_projection()
        _log_event("Projection cleared")
        return _state_payload()

    @app.post("/api/projection/blackout")
    async def toggle_blackout() -> Dict[str, Any]:
        enabled = store.toggle_blackout()
        _log_event("Blackout toggled", blackout=enabled)
        return _state_payload()

    @app.get("/api/projection/snapshot")
    async def get_snapshot() -> Dict[str, Any]:
        latest = channel.latest()
        if latest is None:
            return {"message": None}
        return {"message": latest.to_wire()}

    @app.get("/api/projection/stream")
    async def stream_projection(request: Request) -> StreamingResponse:
        async def _events() -> AsyncIterator[str]:
            last_revision = 0
            async with contextlib.aclosing(
                channel.stream(keepalive=_STREAM_KEEPALIVE_SECONDS)
            ) as messages:
                async for message in messages:
                    if await request.is_disconnected():
                        break
                    if message is None:
                        yield ": keep-alive\n\n"
                        continue
                    if message.revision <= last_revision:
                        continue
                    last_revision = message.revision
                    yield _format_sse(message)
            LOGGER.debug("Projector stream closed at revision %s", last_revision)

        return StreamingResponse(
            _events(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    def _navigation_conflict(label: str) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"There is no {label} item in the current sequence.",
        )

    @app.post("/api/navigation/advance")
    async def navigate_advance() -> Dict[str, Any]:
        if not store.advance():
            raise _navigation_conflict("next")
        return _state_payload()

    @app.post("/api/navigation/retreat")
    async def navigate_retreat() -> Dict[str, Any]:
        if not store.retreat():
            raise _navigation_conflict("previous")
        return _state_payload()

    @app.get("/api/autoplay")
    async def get_autoplay() -> Dict[str, Any]:
        return autoplay.status()

    @app.post("/api/autoplay/start")
    async def start_autoplay() -> Dict[str, Any]:
        if not await autoplay.start():
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=autoplay.notice or "Nothing to play.",
            )
        return autoplay.status()

    @app.post("/api/autoplay/stop")
    async def stop_autoplay() -> Dict[str, Any]:
        await autoplay.stop()
        return autoplay.status()

    @app.get("/api/settings")
    async def get_settings() -> Dict[str, Any]:
        return {"settings": asdict(context.settings_store.load())}

    @app.put("/api/settings")
    async def update_settings(payload: SettingsPayload) -> Dict[str, Any]:
        settings = context.settings_store.load()
        if payload.font_size is not None:
            settings.font_size = payload.font_size
        if payload.background_image is not None:
            settings.background_image = payload.background_image.strip() or None
        if payload.autoplay_interval_seconds is not None:
            settings.autoplay_interval_seconds = payload.autoplay_interval_seconds
            autoplay.interval = payload.autoplay_interval_seconds
        context.settings_store.save(settings)
        store.set_display_settings(settings.display_settings())
        _log_event(
            "Persisted settings",
            font_size=settings.font_size,
            background_image=settings.background_image,
            autoplay_interval_seconds=settings.autoplay_interval_seconds,
        )
        return {"settings": asdict(settings)}

    @app.get("/api/resources")
    async def list_resources() -> Dict[str, Any]:
        return {"resources": library.describe()}

    @app.get("/api/resources/{resource_id}")
    async def get_resource(
        resource_id: str,
        force: bool = Query(False),
        include_items: bool = Query(True),
    ) -> Dict[str, Any]:
        result = await _acquire(resource_id, force=force)
        return _serialize_result(result, include_items=include_items)

    @app.post("/api/scripture/{resource_id}/project")
    async def project_scripture(resource_id: str, payload: VerseRequest) -> Dict[str, Any]:
        result = await _acquire(resource_id)
        if result.pack.kind != KIND_SCRIPTURE:
            raise HTTPException(status_code=400, detail=f"'{resource_id}' is not a scripture pack")
        book = _find_book(result.pack.items, payload.book)
        if book is None:
            raise HTTPException(status_code=404, detail=f"Book '{payload.book}' not found")
        try:
            project_verse(store, book, payload.chapter - 1, payload.verse - 1)
        except IndexError as error:
            raise HTTPException(status_code=404, detail="Verse not found") from error
        return _state_payload()

    @app.post("/api/hymnal/{number}/project")
    async def project_hymn(number: int, payload: StanzaRequest) -> Dict[str, Any]:
        result = await _acquire(payload.resource_id)
        if result.pack.kind != KIND_HYMNAL:
            raise HTTPException(status_code=400, detail=f"'{payload.resource_id}' is not a hymnal")
        hymn = result.pack.find_hymn(number)
        if hymn is None:
            raise HTTPException(status_code=404, detail=f"Hymn {number} not found")
        try:
            project_stanza(store, hymn, payload.stanza)
        except IndexError as error:
            raise HTTPException(status_code=404, detail="Stanza not found") from error
        return _state_payload()

    @app.post("/api/slides/project")
    async def project_slides(payload: SlideRequest) -> Dict[str, Any]:
        try:
            project_slide(store, payload.text, payload.index, title=payload.title.strip())
        except IndexError as error:
            raise HTTPException(status_code=404, detail="Slide not found") from error
        return _state_payload()

    @app.get("/api/debug/logs")
    async def get_debug_logs(after: Optional[int] = None) -> Dict[str, Any]:
        handler: DebugLogHandler = app.state.debug_log_handler
        entries = handler.collect(after)
        next_marker = handler.last_id if entries else (after or handler.last_id)
        return {"logs": entries, "next": next_marker}

    return app


__all__ = ["DebugLogHandler", "create_app"]
