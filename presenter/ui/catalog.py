"""A Rich-powered console view of configured resources and the local cache."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from ..services.storage import CacheSummary


CACHED_STYLE = "cyan"


def _format_size(size_bytes: int) -> str:
    size = float(size_bytes)
    for unit in ("B", "KB", "MB"):
        if size < 1024 or unit == "MB":
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} MB"


class CatalogUI:
    """Render the resource catalogue as a table."""

    def __init__(self, *, console: Optional[Console] = None) -> None:
        self._console = console or Console()

    def run(self, resources: List[Dict[str, Any]], cache: List[CacheSummary]) -> None:
        console = self._console
        console.rule("[bold magenta]Presenter Tools Resources")

        if not resources:
            console.print(
                Panel(
                    "No resources are configured.\n"
                    "Add entries under [bold]resources[/bold] in config/default.json.",
                    border_style="yellow",
                    box=box.ROUNDED,
                )
            )
            return

        console.print(self._build_table(resources, cache))

        offline_only = [resource["id"] for resource in resources if not resource.get("mirrors")]
        if offline_only:
            console.print(
                f"[yellow]No mirrors configured for {', '.join(offline_only)}; "
                "only bundled or cached copies will be served. "
                "Add URLs under [bold]mirrors[/bold] in config/default.json.[/yellow]"
            )

    def _build_table(self, resources: List[Dict[str, Any]], cache: List[CacheSummary]) -> Table:
        cached = {entry.key: entry for entry in cache}
        table = Table(box=box.SIMPLE_HEAVY, header_style="bold cyan")
        table.add_column("Resource")
        table.add_column("Kind")
        table.add_column("Label")
        table.add_column("Mirrors", justify="right")
        table.add_column("Bundled", justify="center")
        table.add_column("Cache")

        for resource in resources:
            entry = cached.get(resource["id"])
            table.add_row(
                Text(resource["id"], style="bold"),
                resource["kind"],
                resource.get("label") or "",
                str(resource.get("mirrors", 0)),
                "✔" if resource.get("bundled") else "",
                self._format_cache(entry),
            )
        return table

    @staticmethod
    def _format_cache(entry: Optional[CacheSummary]) -> Text:
        if entry is None:
            return Text("not cached", style="dim")
        stamp = entry.stored_at.strftime("%Y-%m-%d %H:%M")
        return Text(f"{stamp} · {_format_size(entry.size_bytes)}", style=CACHED_STYLE)


__all__ = ["CatalogUI"]
