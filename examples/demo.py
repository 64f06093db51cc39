#!/usr/bin/env python3
"""Demo: Using membank as a Python library.

Runs fully offline with the in-memory repositories and the mock content
service, so it needs no API key.
"""

import asyncio
from pathlib import Path

from membank.context import CompileContextOptions, ContextCompiler
from membank.hierarchy.compiler import HierarchyCompiler
from membank.llm.mock import MockContentService
from membank.search import SearchQuery
from membank.search.ranker import Ranker
from membank.storage import (
    DirectoryFileRepository,
    InMemorySummaryRepository,
    InMemoryVectorRepository,
)


async def main():
    # Every sub-directory of the workspace is a project
    workspace = Path(".")
    files = DirectoryFileRepository(workspace)
    projects = await files.list_projects()
    if not projects:
        print("No projects found. Create a directory of markdown notes first.")
        return
    project = projects[0]

    service = MockContentService()
    ranker = Ranker(files, InMemoryVectorRepository(), service)
    hierarchy = HierarchyCompiler(files, InMemorySummaryRepository(), service)
    context = ContextCompiler(ranker, hierarchy, service)

    # 1. Build the summary hierarchy
    print(f"Compiling hierarchy for '{project}'...")
    tree = await hierarchy.compile_project(project)
    print(f"  Nodes: {len(tree.nodes)}")
    print(f"  Sections: {len(tree.sections)}")
    print(f"  Project summary: ~{tree.root_summary.tokens} tokens")
    print(f"  Compression: {tree.compression_ratio:.2f}")

    # 2. Pick summaries for a budget
    print("\n--- Coarsest summaries within 500 tokens ---")
    for summary in await hierarchy.get_optimal_summary_level(project, 500):
        print(f"  {summary.id} (~{summary.tokens} tokens)")

    # 3. Ranked search
    await ranker.index_project(project)
    print("\n--- Searching for 'decisions' ---")
    response = await ranker.search(SearchQuery(query="decisions", project_name=project, limit=5))
    for r in response.results:
        print(f"  {r.file.name}  score={r.scores.combined:.3f}  {r.snippet[:60]}")

    # 4. Budgeted context for an LLM
    query = "what did we decide about storage?"
    budget = context.recommend_budget(query, "qa")
    result = await context.compile_context(
        query, budget, CompileContextOptions(project_name=project)
    )
    print(f"\n--- Context for '{query}' ---")
    print(result.summary())


if __name__ == "__main__":
    asyncio.run(main())
