"""Rich-powered console output for membank."""

from __future__ import annotations

from rich.console import Console as RichConsole
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

from membank import __version__
from membank.context.models import ContextBudget, ContextCompilation
from membank.hierarchy.models import Summary, SummaryHierarchy, SummaryState
from membank.search.models import SearchResponse


class Console:
    """Terminal output for membank using Rich."""

    def __init__(self) -> None:
        self.console = RichConsole()

    def banner(self) -> None:
        """Show the membank banner."""
        self.console.print(
            Panel(
                f"[bold cyan]membank[/bold cyan] [dim]v{__version__}[/dim]\n"
                "[dim]Token-budgeted context from your project memory[/dim]",
                border_style="cyan",
                padding=(1, 2),
            )
        )

    def success(self, message: str) -> None:
        self.console.print(f"[green]✓[/green] {message}")

    def error(self, message: str) -> None:
        self.console.print(f"[red]✗[/red] {message}")

    def warning(self, message: str) -> None:
        self.console.print(f"[yellow]![/yellow] {message}")

    def info(self, message: str) -> None:
        self.console.print(f"[blue]i[/blue] {message}")

    def show_hierarchy(self, hierarchy: SummaryHierarchy) -> None:
        """Display the summary tree with token counts."""
        root = hierarchy.root_summary
        tree = Tree(
            f"[bold cyan]{hierarchy.project_name}[/bold cyan] "
            f"{self._state_label(root)} [dim]~{root.tokens} tokens[/dim]"
        )
        nodes = {n.id: n for n in hierarchy.nodes}
        for section in hierarchy.sections:
            branch = tree.add(
                f"[bold]{section.id.rsplit(':', 1)[-1]}[/bold] "
                f"{self._state_label(section)} [dim]~{section.tokens} tokens[/dim]"
            )
            for child_id in section.metadata.child_summary_ids:
                node = nodes.get(child_id)
                if node is None:
                    continue
                branch.add(
                    f"[cyan]{node.metadata.source_files[0]}[/cyan] "
                    f"{self._state_label(node)} [dim]~{node.tokens} tokens "
                    f"({node.metadata.type.value})[/dim]"
                )
        self.console.print(tree)

        table = Table(border_style="cyan")
        table.add_column("Level", style="bold")
        table.add_column("Summaries", justify="right")
        table.add_column("Tokens", justify="right", style="cyan")
        table.add_row("project", "1", str(root.tokens))
        table.add_row(
            "section", str(len(hierarchy.sections)),
            str(sum(s.tokens for s in hierarchy.sections)),
        )
        table.add_row(
            "node", str(len(hierarchy.nodes)),
            str(sum(n.tokens for n in hierarchy.nodes)),
        )
        self.console.print(table)
        self.console.print(
            f"  Compression: {hierarchy.compression_ratio:.2f}  "
            f"Last updated: {hierarchy.last_updated:%Y-%m-%d %H:%M:%S}"
        )
        for warning in hierarchy.warnings:
            self.warning(f"{warning.reason}: {', '.join(warning.summary_ids)}")

    def show_summaries(self, summaries: list[Summary], max_tokens: int) -> None:
        """Display the summaries chosen for a token budget."""
        used = sum(s.tokens for s in summaries)
        level = summaries[0].level.value if summaries else "none"
        self.console.print(
            f"[bold]Level:[/bold] {level}  "
            f"[bold]Tokens:[/bold] {used:,} / {max_tokens:,}  "
            f"[bold]Summaries:[/bold] {len(summaries)}"
        )
        for s in summaries:
            self.console.print(
                Panel(s.content or "[dim](empty)[/dim]", title=s.id, border_style="blue")
            )

    def show_search_results(self, response: SearchResponse) -> None:
        """Display ranked search results with their score breakdown."""
        table = Table(border_style="cyan")
        table.add_column("#", justify="right", style="dim")
        table.add_column("File", style="bold")
        table.add_column("Score", justify="right", style="cyan")
        table.add_column("Sem", justify="right")
        table.add_column("Rec", justify="right")
        table.add_column("Freq", justify="right")
        table.add_column("Sal", justify="right")
        table.add_column("Decay", justify="right")
        table.add_column("Snippet", style="dim", overflow="ellipsis", max_width=50)

        for i, r in enumerate(response.results, 1):
            s = r.scores
            sem = f"{s.semantic:.2f}" if r.semantic_available else f"[yellow]{s.semantic:.2f}[/yellow]"
            table.add_row(
                str(i),
                f"{r.file.project_name}/{r.file.name}",
                f"{s.combined:.3f}",
                sem,
                f"{s.recency:.2f}",
                f"{s.frequency:.2f}",
                f"{s.salience:.2f}",
                f"{s.time_decay:.2f}",
                r.snippet,
            )

        self.console.print(table)
        self.console.print(
            f"  {len(response.results)} of {response.total_found} files "
            f"in {response.query_time_ms:.1f}ms"
        )
        if response.degraded:
            self.warning("Semantic scores fell back to a neutral value for some files")

    def show_budget(self, budget: ContextBudget) -> None:
        """Display a recommended budget."""
        table = Table(title="Recommended Budget", border_style="cyan")
        table.add_column("Setting", style="bold")
        table.add_column("Value", justify="right", style="cyan")
        table.add_row("Max tokens", f"{budget.max_tokens:,}")
        table.add_row("Reserved tokens", f"{budget.reserved_tokens:,}")
        table.add_row("Available tokens", f"{budget.available_tokens:,}")
        if budget.search_ratio is not None:
            table.add_row("Search share", f"{budget.search_ratio:.0%}")
        if budget.summarization_ratio is not None:
            table.add_row("Summary share", f"{budget.summarization_ratio:.0%}")
        table.add_row("Compression target", f"{budget.compression_target:.0%}")
        self.console.print(table)

    def show_compilation(self, result: ContextCompilation) -> None:
        """Display what a compiled context contains."""
        self.console.print()
        self.console.print("[bold]Compiled Context[/bold]")
        self.console.print(
            f"  Tokens: {result.used_tokens:,} / {result.total_tokens:,} "
            f"({result.budget_used_pct:.0f}%)"
        )
        self.console.print(
            f"  Items: {len(result.items)} included, {len(result.skipped)} skipped"
        )
        self.console.print(f"  Time: {result.compilation_time_ms:.1f}ms")
        if result.incomplete:
            self.warning("Incomplete: some relevant content did not fit the budget")
        if result.degraded:
            self.warning("Degraded: some sources or scores were unavailable")
        for warning in result.warnings:
            self.warning(f"{warning.project_name}: {warning.reason}")
        for s in result.skipped:
            self.console.print(f"  [dim]skipped {s.id} (~{s.tokens} tokens): {s.reason}[/dim]")
        self.console.print()

    def show_stats(self, stats: dict) -> None:
        """Display summary statistics for a project."""
        table = Table(title="Summary Statistics", border_style="cyan")
        table.add_column("Metric", style="bold")
        table.add_column("Value", justify="right", style="cyan")
        table.add_row("Summaries", str(stats.get("total_summaries", 0)))
        table.add_row("Total tokens", f"{stats.get('total_tokens', 0):,}")
        table.add_row(
            "Avg compression", f"{stats.get('average_compression_ratio', 0.0):.2f}"
        )
        last = stats.get("last_updated")
        table.add_row("Last updated", f"{last:%Y-%m-%d %H:%M:%S}" if last else "never")
        self.console.print(table)

    @staticmethod
    def _state_label(summary: Summary) -> str:
        if summary.metadata.state == SummaryState.COMPILED:
            return ""
        return f"[yellow]({summary.metadata.state.value})[/yellow]"
