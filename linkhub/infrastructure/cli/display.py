import logging
from datetime import datetime
from typing import Any, List, Optional

from rich.box import HEAVY, ROUNDED, SIMPLE
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from linkhub.domain.events.queue_events import (
    BatchCompleted,
    BatchDispatched,
    BatchFailed,
    CooldownEntered,
    DelayAdjusted,
    DomainEvent,
)
from linkhub.domain.interfaces.user_interface import UserInterface
from linkhub.domain.models.catalog import CatalogItem, ProcessingStatus
from linkhub.domain.models.rate_limit import RateLimitState
from linkhub.infrastructure.resilience.rate_limiter import format_cooldown

logger = logging.getLogger(__name__)

STATUS_STYLES = {
    ProcessingStatus.PENDING: "yellow",
    ProcessingStatus.QUEUED: "cyan",
    ProcessingStatus.PROCESSING: "bold blue",
    ProcessingStatus.DONE: "green",
    ProcessingStatus.ERROR: "bold red",
}


class ConsoleDisplay(UserInterface):
    """Concrete implementation of UserInterface using the rich library for console output."""

    def __init__(self, console: Optional[Console] = None):
        self._console = console or Console()

    @property
    def console(self) -> Console:
        """Get the Rich console instance for direct operations."""
        return self._console

    def display_items(self, items: List[CatalogItem], **kwargs: Any) -> None:
        """Displays catalog items as a table.

        Args:
            items: Items to show.
            **kwargs: Additional arguments including:
                - title: Table title (default: "Catalog")
                - show_ids: Show full ids instead of the first 8 characters
        """
        title = kwargs.get("title", "Catalog")
        show_ids = kwargs.get("show_ids", False)
        if not items:
            self.display_info("The catalog is empty.")
            return

        table = Table(title=title, box=ROUNDED, border_style="cyan", show_lines=False)
        table.add_column("ID", style="dim", no_wrap=True)
        table.add_column("Name", style="bold")
        table.add_column("Category", style="magenta")
        table.add_column("Status")
        table.add_column("Description")
        table.add_column("Tags", style="dim")
        for item in items:
            style = STATUS_STYLES.get(item.processing_status, "white")
            table.add_row(
                item.id if show_ids else item.id[:8],
                f"{item.name}\n[dim]{item.url}[/dim]",
                item.category,
                f"[{style}]{item.processing_status.value}[/{style}]",
                item.description,
                ", ".join(item.tags),
            )
        self.console.print(table)

    def display_rate_limit(self, state: RateLimitState, cooldown_remaining: float, max_requests: int) -> None:
        table = Table(show_header=False, box=SIMPLE, border_style="cyan", padding=(0, 1))
        table.add_column("Key", style="cyan")
        table.add_column("Value")
        table.add_row("Requests this window", f"{state.requests_this_window}/{max_requests}")
        table.add_row("Window started", datetime.fromtimestamp(state.window_start).strftime("%H:%M:%S"))
        table.add_row("Consecutive errors", str(state.consecutive_errors))
        if cooldown_remaining > 0:
            table.add_row("Cooldown", f"[bold red]active[/bold red] ({format_cooldown(cooldown_remaining)} left)")
        else:
            table.add_row("Cooldown", "[green]inactive[/green]")
        self.console.print(Panel(table, title="[bold cyan]Rate limit[/bold cyan]", border_style="cyan", box=ROUNDED))

    def display_error(self, error_message: str, **kwargs: Any) -> None:
        panel = Panel(
            Text(error_message, style="white"),
            title="[bold red]Error[/bold red]",
            border_style="red",
            box=HEAVY,
            padding=(0, 1),
        )
        self.console.print(panel)

    def display_warning(self, warning_message: str, **kwargs: Any) -> None:
        logger.warning(f"Display warning: {warning_message}")
        panel = Panel(
            Text(warning_message, style="white"),
            title="[bold yellow]Warning[/bold yellow]",
            border_style="yellow",
            box=HEAVY,
            padding=(0, 1),
        )
        self.console.print(panel)

    def display_info(self, info_message: str, **kwargs: Any) -> None:
        panel = Panel(
            Text(info_message, style="white"),
            title="[bold blue]Info[/bold blue]",
            border_style="blue",
            box=SIMPLE,
            padding=(0, 1),
        )
        self.console.print(panel)

    def display_success(self, message: str, **kwargs: Any) -> None:
        self.console.print(f"[bold green]✓[/bold green] {message}")

    def display_event(self, event: DomainEvent) -> None:
        timestamp = datetime.now().strftime("%H:%M:%S")
        if isinstance(event, BatchDispatched):
            kind = "manual batch" if event.manual else "batch"
            line = f"[blue]→ {kind} of {len(event.item_ids)} dispatched[/blue]"
        elif isinstance(event, BatchCompleted):
            line = (
                f"[green]✓ {len(event.updated)} enriched[/green], "
                f"{len(event.soft_failures)} unclassified, {len(event.missing)} missing"
            )
            if event.cache_hits:
                line += f", {len(event.cache_hits)} from cache"
        elif isinstance(event, BatchFailed):
            colour = "yellow" if event.quota_related else "red"
            line = f"[{colour}]✗ batch failed ({event.error_type}): {event.error_message}[/{colour}]"
        elif isinstance(event, CooldownEntered):
            until = datetime.fromtimestamp(event.cooldown_until).strftime("%H:%M:%S")
            line = f"[bold yellow]⏸ cooldown until {until}[/bold yellow]"
        elif isinstance(event, DelayAdjusted):
            line = f"[dim]delay {event.previous_seconds:.0f}s → {event.current_seconds:.0f}s[/dim]"
        else:
            line = str(event)
        self.console.print(f"[dim]{timestamp}[/dim] {line}")
