"""Integrity checks for a project's summary tree."""

from __future__ import annotations

import networkx as nx

from membank.exceptions import HierarchyIntegrityError
from membank.hierarchy.models import Summary, SummaryLevel


def validate_hierarchy(summaries: list[Summary], tolerance: float = 0.05) -> None:
    """Check parent/child links, level ordering and token monotonicity.

    The summaries must form a single tree rooted at the one project-level
    summary. Every parent's ``child_summary_ids`` must equal exactly the set
    of summaries pointing back at it, levels must strictly increase towards
    the root, and a parent may not be larger than its children combined
    (plus `tolerance`).

    Raises:
        HierarchyIntegrityError: Listing every violation found.
    """
    problems: list[str] = []
    by_id: dict[str, Summary] = {}
    for s in summaries:
        if s.id in by_id:
            problems.append(f"duplicate summary id {s.id}")
        by_id[s.id] = s

    roots = [s for s in summaries if s.level == SummaryLevel.PROJECT]
    if len(roots) != 1:
        problems.append(f"expected exactly one project summary, found {len(roots)}")

    graph = nx.DiGraph()
    graph.add_nodes_from(by_id)

    for s in by_id.values():
        parent_id = s.metadata.parent_summary_id
        if s.level == SummaryLevel.PROJECT:
            if parent_id is not None:
                problems.append(f"project summary {s.id} has a parent ({parent_id})")
            continue
        if parent_id is None:
            problems.append(f"{s.id} has no parent")
            continue
        parent = by_id.get(parent_id)
        if parent is None:
            problems.append(f"{s.id} points at missing parent {parent_id}")
            continue
        if parent.level.rank <= s.level.rank:
            problems.append(
                f"{s.id} ({s.level.value}) has parent {parent.id} at level {parent.level.value}"
            )
        graph.add_edge(parent_id, s.id)

    for s in by_id.values():
        declared = set(s.metadata.child_summary_ids)
        actual = set(graph.successors(s.id))
        if len(declared) != len(s.metadata.child_summary_ids):
            problems.append(f"{s.id} lists duplicate child ids")
        if declared != actual:
            missing = sorted(actual - declared)
            dangling = sorted(declared - actual)
            problems.append(f"{s.id} child ids out of sync (missing={missing}, dangling={dangling})")
        if actual:
            child_tokens = sum(by_id[c].tokens for c in actual)
            if s.tokens > child_tokens * (1 + tolerance):
                problems.append(
                    f"{s.id} has {s.tokens} tokens, more than its children ({child_tokens})"
                )

    if not problems and by_id and not nx.is_arborescence(graph):
        problems.append("summaries do not form a single tree")

    if problems:
        raise HierarchyIntegrityError("; ".join(problems))
