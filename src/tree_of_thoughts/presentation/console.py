"""Rich-based console dashboard for investigations.

:class:`ConsoleDashboard` renders protocol responses and node tables with
``rich``.  Colour is dropped automatically when the output stream is not a
terminal, so the same calls work in pipes and tests.
"""

from __future__ import annotations

import sys
from typing import TYPE_CHECKING, Any

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from tree_of_thoughts.domain.aggregates import Investigation
from tree_of_thoughts.domain.enums import NodeState, OperationStatus

if TYPE_CHECKING:
    from tree_of_thoughts.services.orchestrator import (
        CommitResponse,
        EndResponse,
        ProposeResponse,
        ReclassifyResponse,
        StartResponse,
        StatusResponse,
    )

_STATE_STYLES: dict[NodeState, str] = {
    NodeState.EXPLORE: "cyan",
    NodeState.FOUND: "bold green",
    NodeState.VERIFY: "green",
    NodeState.EXHAUST: "orange3",
    NodeState.DEAD: "red",
}


def _styled(state: NodeState) -> str:
    style = _STATE_STYLES[state]
    return f"[{style}]{state.value}[/{style}]"


def _status_line(status: OperationStatus) -> str:
    colour = "green" if status == OperationStatus.OK else "red"
    return f"[bold {colour}]{status.value}[/bold {colour}]"


class ConsoleDashboard:
    """Console presentation layer for protocol responses.

    Parameters
    ----------
    file:
        Output stream.  Defaults to ``sys.stdout``.
    width:
        Fixed console width; ``None`` lets rich detect it.
    """

    def __init__(self, file: Any = None, width: int | None = None) -> None:
        self._file = file or sys.stdout
        self._console = Console(file=self._file, width=width, highlight=False)

    # -- generic ------------------------------------------------------------

    def _print_issues(self, response: Any) -> None:
        errors = getattr(response, "errors", [])
        if errors:
            table = Table(title="Errors", show_header=True, header_style="bold red")
            table.add_column("Node", style="bold")
            table.add_column("Code")
            table.add_column("Message")
            table.add_column("Suggestion", style="dim")
            for issue in errors:
                table.add_row(
                    escape(issue.node_id),
                    issue.code.value,
                    escape(issue.message),
                    escape(issue.suggestion),
                )
            self._console.print(table)

        warnings = getattr(response, "warnings", [])
        for warning in warnings:
            self._console.print(f"[yellow]{escape(str(warning))}[/yellow]")

    def print_start(self, response: StartResponse) -> None:
        self._console.print()
        self._console.print(f"[bold]Session[/bold] {response.session_id}")
        self._console.print(f"[bold]Query[/bold]   {escape(response.query)}")
        self._console.print()
        self._console.print(response.instructions, markup=False)
        self._console.print()

    def print_response(
        self, response: ProposeResponse | CommitResponse | ReclassifyResponse
    ) -> None:
        """Status line, message, then any errors and warnings."""
        self._console.print()
        self._console.print(f"{_status_line(response.status)}  {escape(response.message)}")
        self._print_issues(response)
        self._console.print()

    # -- status -------------------------------------------------------------

    def print_status(self, response: StatusResponse) -> None:
        if response.status != OperationStatus.OK:
            self._console.print(f"{_status_line(response.status)}  {escape(response.end_blocker)}")
            self._print_issues(response)
            return

        table = Table(
            title=f"Investigation {response.session_id}",
            show_header=True,
            header_style="bold cyan",
        )
        table.add_column("Field", style="bold")
        table.add_column("Value")
        table.add_row("Query", escape(response.query))
        table.add_row("Round", str(response.current_round))
        table.add_row("Batch", str(response.current_batch))
        table.add_row("Nodes", str(response.total_nodes))
        for state in NodeState:
            table.add_row(f"  {_styled(state)}", str(response.state_counts.get(state.value, 0)))
        table.add_row("Pending proposals", ", ".join(response.pending_proposals) or "-")
        table.add_row("Children still owed", str(response.pending_children))
        table.add_row(
            "Can end",
            "[green]yes[/green]" if response.can_end else "[red]no[/red]",
        )
        if response.end_blocker:
            table.add_row("Blocked by", escape(response.end_blocker))
        table.add_row("Next action", f"[bold]{escape(response.next_action)}[/bold]")

        self._console.print()
        self._console.print(table)
        self._console.print()

    def print_nodes(self, investigation: Investigation) -> None:
        """One row per committed node, grouped by round."""
        table = Table(title="Nodes", show_header=True, header_style="bold cyan")
        table.add_column("Id", style="bold")
        table.add_column("Round", justify="right")
        table.add_column("Parent")
        table.add_column("State")
        table.add_column("Children", justify="right")
        table.add_column("Title")

        for node in sorted(investigation.all_nodes(), key=lambda n: (n.round, n.id)):
            table.add_row(
                node.id,
                str(node.round),
                node.parent or "-",
                _styled(node.state),
                str(node.child_count),
                escape(node.title),
            )
        self._console.print()
        self._console.print(table)
        self._console.print()

    # -- end ----------------------------------------------------------------

    def print_end(self, response: EndResponse) -> None:
        self._console.print()
        if response.status != OperationStatus.OK:
            self._console.print(f"{_status_line(response.status)}  {escape(response.reason)}")
            self._print_issues(response)
            self._console.print()
            return

        self._console.print(
            f"{_status_line(response.status)}  {response.total_rounds} rounds, "
            f"{response.total_nodes} nodes, {response.dead_end_count} dead ends"
        )
        table = Table(title="Solutions", show_header=True, header_style="bold green")
        table.add_column("Id", style="bold")
        table.add_column("Round", justify="right")
        table.add_column("Title")
        table.add_column("Findings")
        table.add_column("Verified by")
        for solution in response.solutions:
            table.add_row(
                solution.node_id,
                str(solution.round),
                escape(solution.title),
                escape(solution.findings),
                ", ".join(solution.verified_by) or "-",
            )
        self._console.print(table)

        if response.quality:
            self._console.print(
                f"  [dim]quality:[/dim] {response.quality.get('composite_score', 0.0):.2f} "
                f"[dim](depth {response.quality.get('depth_score', 0.0):.2f}, "
                f"breadth {response.quality.get('breadth_score', 0.0):.2f}, "
                f"balance {response.quality.get('balance_score', 0.0):.2f})[/dim]"
            )
        self._console.print()
