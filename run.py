"""Entry-point for the Presenter Tools application."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
import webbrowser
from pathlib import Path
from typing import Optional

import typer
import uvicorn

from presenter.bootstrap import initialize_app
from presenter.context import build_context
from presenter.logging_utils import DEFAULT_LOG_FORMAT, configure_logging, get_log_file_path
from presenter.services.acquisition import AcquisitionStatus, ResourceUnavailable
from presenter.services.resources import UnknownResourceError
from presenter.services.storage import ResourceStore
from presenter.ui.catalog import CatalogUI
from presenter.web import create_app


LOGGER = logging.getLogger("presenter_tools.cli")


cli = typer.Typer(add_completion=False, help="Presenter Tools management commands")


def _prepare_logging(storage_root: Path) -> None:
    log_file = get_log_file_path(storage_root)
    formatter = logging.Formatter(DEFAULT_LOG_FORMAT)
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setFormatter(formatter)
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    configure_logging(handlers=[file_handler, stream_handler])


DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8000


@cli.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Launch the web server when no explicit command is provided."""

    if ctx.invoked_subcommand is None:
        ctx.invoke(serve, host=DEFAULT_HOST, port=DEFAULT_PORT, root_path=None, open_browser=True)


def _normalize_root_path(root_path: Optional[str]) -> str:
    if root_path is None:
        return ""
    normalized = root_path.strip()
    if not normalized:
        return ""
    if not normalized.startswith("/"):
        normalized = f"/{normalized}"
    return normalized.rstrip("/")


@cli.command()
def serve(
    host: str = typer.Option(DEFAULT_HOST, help="Host interface for the web server"),
    port: int = typer.Option(DEFAULT_PORT, help="Port for the web server"),
    root_path: Optional[str] = typer.Option(
        None,
        help="Prefix the application expects when mounted behind a proxy",
        envvar="PRESENTER_TOOLS_ROOT_PATH",
    ),
    open_browser: bool = typer.Option(
        True,
        "--open-browser/--no-browser",
        help="Open the control surface in a browser once the server starts",
    ),
) -> None:
    """Run the control and projector surfaces."""

    app_config = initialize_app()
    _prepare_logging(app_config.storage_root)

    context = build_context(app_config)
    normalized_root = _normalize_root_path(root_path)
    app = create_app(context, root_path=normalized_root)

    server_config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_config=None,
        root_path=normalized_root,
    )
    server = uvicorn.Server(server_config)
    app.state.server = server

    if open_browser:
        browser_host = host
        if not browser_host or browser_host in {"0.0.0.0", "::"}:
            browser_host = "127.0.0.1"
        url_path = f"{normalized_root}/" if normalized_root else "/"
        url = f"http://{browser_host}:{port}{url_path}"

        def _open_browser_later() -> None:
            time.sleep(1.0)
            try:
                webbrowser.open(url, new=2, autoraise=True)
            except webbrowser.Error as error:
                LOGGER.warning("Could not open a browser for %s: %s", url, error)

        threading.Thread(target=_open_browser_later, daemon=True).start()

    server.run()


@cli.command()
def fetch(
    resource_id: str = typer.Argument(..., help="Identifier of the configured resource"),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Skip bundled and cached copies and go to the network first.",
    ),
) -> None:
    """Acquire *resource_id* and report where the content came from."""

    config = initialize_app()
    _prepare_logging(config.storage_root)
    context = build_context(config)

    try:
        result = asyncio.run(context.library.get(resource_id, force=force))
    except UnknownResourceError as error:
        typer.echo(f"Unknown resource '{resource_id}'.")
        raise typer.Exit(code=2) from error
    except ResourceUnavailable as error:
        typer.echo(f"Resource unavailable: {error}")
        raise typer.Exit(code=1) from error

    typer.echo(f"{resource_id}: {len(result.pack)} items ({result.status.value})")
    if result.status is AcquisitionStatus.OFFLINE_FALLBACK:
        typer.echo(f"  No mirror could be reached; serving the {result.source} copy.")
    elif result.source:
        typer.echo(f"  Source: {result.source}")


@cli.command()
def resources() -> None:
    """List configured resources together with their cache state."""

    config = initialize_app()
    _prepare_logging(config.storage_root)
    context = build_context(config)

    store: ResourceStore = context.resource_store
    CatalogUI().run(context.library.describe(), store.list_entries())


if __name__ == "__main__":
    cli()
