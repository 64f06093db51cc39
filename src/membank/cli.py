"""Command-line interface for membank."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from collections.abc import Awaitable
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, TypeVar

import click
from rich.logging import RichHandler

from membank import __version__
from membank.config import (
    SUMMARY_DB_FILE,
    ProjectConfig,
    find_project_root,
    get_membank_dir,
    load_config,
    save_config,
    set_config_value,
)
from membank.exceptions import MembankError
from membank.ui.console import Console

if TYPE_CHECKING:
    from membank.context.engine import ContextCompiler
    from membank.hierarchy.compiler import HierarchyCompiler
    from membank.search.ranker import Ranker
    from membank.storage.sqlite import SQLiteSummaryRepository

console = Console()

T = TypeVar("T")


def _get_project_root(path: str | None = None) -> Path:
    """Find the workspace root or error."""
    if path:
        root = Path(path).resolve()
        if not root.exists():
            console.error(f"Path does not exist: {path}")
            sys.exit(1)
        return root

    root = find_project_root()
    if root is None:
        console.error(
            "No membank workspace found. Run 'membank init' first, "
            "or specify a path with --path."
        )
        sys.exit(1)
    return root


@dataclass
class _Services:
    config: ProjectConfig
    ranker: Ranker
    hierarchy: HierarchyCompiler
    context: ContextCompiler
    summaries: SQLiteSummaryRepository


def _build_services(root: Path) -> _Services:
    """Wire repositories and the content service for a workspace."""
    from membank.context.engine import ContextCompiler
    from membank.hierarchy.compiler import HierarchyCompiler
    from membank.llm.factory import create_content_service
    from membank.search.ranker import Ranker
    from membank.storage import (
        DirectoryFileRepository,
        InMemoryVectorRepository,
        SQLiteSummaryRepository,
    )

    config = load_config(root)
    try:
        service = create_content_service(config.llm)
    except (MembankError, ValueError) as e:
        console.error(str(e))
        sys.exit(1)

    files = DirectoryFileRepository(root)
    summaries = SQLiteSummaryRepository(get_membank_dir(root) / SUMMARY_DB_FILE)
    ranker = Ranker(
        files, InMemoryVectorRepository(), service, config.ranking, config.concurrency
    )
    hierarchy = HierarchyCompiler(
        files, summaries, service, config.hierarchy, config.concurrency
    )
    context = ContextCompiler(ranker, hierarchy, service, config.context, config.concurrency)
    return _Services(config, ranker, hierarchy, context, summaries)


def _run(coro: Awaitable[T]) -> T:
    """Run a coroutine, turning membank errors into a clean exit."""
    try:
        return asyncio.run(coro)
    except MembankError as e:
        console.error(str(e))
        sys.exit(1)


@click.group()
@click.version_option(version=__version__, prog_name="membank")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging.")
def main(verbose: bool):
    """membank - token-budgeted context from your project memory."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=console.console, show_path=False)],
        )


@main.command()
@click.option("--path", "-p", default=None, help="Path to the workspace root.")
@click.option("--provider", default=None, help="LLM provider (anthropic, openai, local, mock).")
@click.option("--model", default=None, help="LLM model name.")
def init(path: str | None, provider: str | None, model: str | None):
    """Initialize a membank workspace. Each sub-directory is a project."""
    root = Path(path or ".").resolve()
    if not root.exists():
        console.error(f"Path does not exist: {root}")
        sys.exit(1)

    console.banner()
    console.info(f"Initializing membank for: {root}")

    config = load_config(root)
    config.name = root.name
    config.root_path = str(root)
    if provider:
        config.llm.provider = provider
    if model:
        config.llm.model = model

    save_config(root, config)
    console.success("Configuration saved")

    from membank.storage.files import DirectoryFileRepository

    projects = asyncio.run(DirectoryFileRepository(root).list_projects())
    if projects:
        console.info(f"Found {len(projects)} project(s): {', '.join(projects)}")
    else:
        console.warning("No projects yet. Add a directory of notes under the workspace root.")


# =========================================================================
# Hierarchy
# =========================================================================

@main.command("compile")
@click.argument("project")
@click.option("--path", "-p", default=None, help="Path to the workspace root.")
@click.option("--force", is_flag=True, help="Recompile every summary.")
@click.option("--max-tokens", "-m", default=None, type=int, help="Token cap per summary.")
@click.option(
    "--type", "summary_type",
    type=click.Choice(["extractive", "abstractive"]),
    default=None,
    help="How oversized files are summarized.",
)
@click.option("--focus", "-f", multiple=True, help="Focus areas (can specify multiple).")
def compile_cmd(
    project: str, path: str | None, force: bool, max_tokens: int | None,
    summary_type: str | None, focus: tuple[str, ...],
):
    """Compile the node -> section -> project summary hierarchy."""
    from membank.hierarchy.models import CompilationOptions, SummaryType

    root = _get_project_root(path)
    services = _build_services(root)
    options = CompilationOptions(
        force_recompile=force,
        max_tokens_per_summary=max_tokens,
        summary_type=SummaryType(summary_type) if summary_type else None,
        focus_areas=list(focus),
    )
    hierarchy = _run(services.hierarchy.compile_project(project, options))
    services.summaries.close()

    console.success(f"Compiled {len(hierarchy.all_summaries())} summaries for '{project}'")
    console.show_hierarchy(hierarchy)


@main.command()
@click.argument("project")
@click.argument("files", nargs=-1, required=True)
@click.option("--path", "-p", default=None, help="Path to the workspace root.")
def update(project: str, files: tuple[str, ...], path: str | None):
    """Recompute the summaries affected by changed FILES."""
    root = _get_project_root(path)
    services = _build_services(root)
    hierarchy = _run(services.hierarchy.update_hierarchy(project, list(files)))
    services.summaries.close()

    if hierarchy.stale:
        console.warning(f"Hierarchy for '{project}' is partially stale")
    else:
        console.success(f"Hierarchy for '{project}' is up to date")
    console.show_hierarchy(hierarchy)


@main.command()
@click.argument("project")
@click.option("--max-tokens", "-m", required=True, type=int, help="Token budget.")
@click.option("--path", "-p", default=None, help="Path to the workspace root.")
def level(project: str, max_tokens: int, path: str | None):
    """Show the coarsest summaries of PROJECT that fit a token budget."""
    root = _get_project_root(path)
    services = _build_services(root)
    summaries = _run(services.hierarchy.get_optimal_summary_level(project, max_tokens))
    services.summaries.close()
    console.show_summaries(summaries, max_tokens)


@main.command()
@click.argument("project")
@click.option("--path", "-p", default=None, help="Path to the workspace root.")
def stale(project: str, path: str | None):
    """Mark summaries whose source files changed since they were compiled."""
    root = _get_project_root(path)
    services = _build_services(root)
    marked = _run(services.hierarchy.detect_stale(project))
    services.summaries.close()

    if marked:
        console.warning(f"{len(marked)} stale summaries:")
        for sid in marked:
            console.console.print(f"  [yellow]{sid}[/yellow]")
        console.info(f"Run 'membank update {project} <files>' or 'membank compile {project}'")
    else:
        console.success("All summaries are up to date")


@main.command()
@click.argument("project")
@click.option("--path", "-p", default=None, help="Path to the workspace root.")
def stats(project: str, path: str | None):
    """Show summary statistics for PROJECT."""
    root = _get_project_root(path)
    services = _build_services(root)
    data = _run(services.summaries.project_stats(project))
    services.summaries.close()
    console.show_stats(data)


# =========================================================================
# Search and context
# =========================================================================

@main.command()
@click.argument("project")
@click.argument("query")
@click.option("--path", "-p", default=None, help="Path to the workspace root.")
@click.option("--limit", "-n", default=None, type=int, help="Maximum results.")
@click.option("--tag", "-t", multiple=True, help="Only files with any of these tags.")
def search(project: str, query: str, path: str | None, limit: int | None, tag: tuple[str, ...]):
    """Rank the files of PROJECT for QUERY."""
    from membank.search.models import SearchQuery

    root = _get_project_root(path)
    services = _build_services(root)

    async def _search():
        await services.ranker.index_project(project)
        return await services.ranker.search(
            SearchQuery(query=query, project_name=project, limit=limit, tags=list(tag))
        )

    response = _run(_search())
    services.summaries.close()

    if not response.results:
        console.warning(f"No files found for '{query}'")
        return
    console.show_search_results(response)


@main.command()
@click.argument("project")
@click.argument("query")
@click.option("--path", "-p", default=None, help="Path to the workspace root.")
@click.option("--budget", "-b", default=None, type=int, help="Token budget (default: recommended).")
@click.option(
    "--type", "context_type",
    type=click.Choice(["search", "summarization", "qa"]),
    default="search",
    help="What the context is for (default: search).",
)
@click.option("--no-files", is_flag=True, help="Use hierarchy summaries only.")
@click.option("--no-summaries", is_flag=True, help="Use ranked files only.")
@click.option(
    "--method",
    type=click.Choice(["aggressive", "balanced", "conservative"]),
    default=None,
    help="Compression method for oversized candidates.",
)
@click.option("--min-relevance", default=0.0, type=float, help="Drop candidates scoring below this.")
@click.option("--quiet", "-q", is_flag=True, help="Print only the rendered context.")
def context(
    project: str, query: str, path: str | None, budget: int | None, context_type: str,
    no_files: bool, no_summaries: bool, method: str | None, min_relevance: float, quiet: bool,
):
    """Compile a token-budgeted context for QUERY from PROJECT.

    Examples:

        membank context alpha "why did we pick sqlite?" --type qa

        membank context alpha "overview of the architecture" --budget 2000 --no-files
    """
    from membank.context.models import CompileContextOptions, ContextBudget

    root = _get_project_root(path)
    services = _build_services(root)

    recommended = services.context.recommend_budget(query, context_type)
    token_budget = recommended
    if budget is not None:
        token_budget = ContextBudget(
            max_tokens=budget,
            search_ratio=recommended.search_ratio,
            summarization_ratio=recommended.summarization_ratio,
        )
    options = CompileContextOptions(
        project_name=project,
        include_files=not no_files,
        include_summaries=not no_summaries,
        compression_method=method,
        min_relevance=min_relevance,
    )

    async def _compile():
        if options.include_files:
            await services.ranker.index_project(project)
        return await services.context.compile_context(query, token_budget, options)

    result = _run(_compile())
    services.summaries.close()

    if not quiet:
        console.show_compilation(result)
        if not result.items:
            console.warning(
                "Nothing was selected. Try a larger --budget, or run "
                f"'membank compile {project}' to build summaries."
            )
    console.console.print(result.render(include_metadata=not quiet), markup=False)


@main.command()
@click.argument("query")
@click.option(
    "--type", "context_type",
    type=click.Choice(["search", "summarization", "qa"]),
    default="search",
    help="What the context is for (default: search).",
)
def budget(query: str, context_type: str):
    """Recommend a token budget for QUERY."""
    from membank.context.budget import recommend_budget

    console.show_budget(recommend_budget(query, context_type))


# =========================================================================
# Configuration
# =========================================================================

@main.command("config")
@click.argument("action", type=click.Choice(["set", "get", "show"]))
@click.argument("key", required=False)
@click.argument("value", required=False)
@click.option("--path", "-p", default=None, help="Path to the workspace root.")
def config_cmd(action: str, key: str | None, value: str | None, path: str | None):
    """Manage membank configuration."""
    root = _get_project_root(path)
    config = load_config(root)

    if action == "show":
        console.console.print_json(json.dumps(config.model_dump(), indent=2))
    elif action == "get":
        if not key:
            console.error("Usage: membank config get <key>")
            sys.exit(1)
        data = config.model_dump()
        for part in key.split("."):
            if isinstance(data, dict) and part in data:
                data = data[part]
            else:
                console.error(f"Unknown key: {key}")
                sys.exit(1)
        console.console.print(f"{key} = {data}")
    elif action == "set":
        if not key or value is None:
            console.error("Usage: membank config set <key> <value>")
            sys.exit(1)
        try:
            # Try to parse as JSON for non-string values
            try:
                parsed_value = json.loads(value)
            except json.JSONDecodeError:
                parsed_value = value

            config = set_config_value(config, key, parsed_value)
            save_config(root, config)
            console.success(f"Set {key} = {parsed_value}")
        except KeyError:
            console.error(f"Unknown config key: {key}")
            sys.exit(1)


if __name__ == "__main__":
    main()
