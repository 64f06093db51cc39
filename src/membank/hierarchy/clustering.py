"""Grouping of node summaries into sections.

Two policies:

- ``tag``: nodes sharing any tag, or the same task, end up in the same
  section. This is the connected components of a bipartite graph linking
  nodes to their labels, so grouping is transitive (a-b share one tag, b-c
  share another, all three are one section). Nodes without any label form
  a single ``untagged`` section.
- ``directory``: nodes are grouped by the parent directory of their source
  file; top-level files form the ``root`` section.

Section keys are deterministic: the smallest label of a component, or the
directory path. Members are sorted by summary id.
"""

from __future__ import annotations

from pathlib import PurePosixPath

import networkx as nx

from membank.hierarchy.models import Summary

UNTAGGED_KEY = "untagged"
ROOT_DIR_KEY = "root"


def _labels(node: Summary) -> list[str]:
    labels = [f"tag:{t}" for t in node.metadata.tags if t]
    if node.metadata.task:
        labels.append(f"task:{node.metadata.task}")
    return labels


def _cluster_by_tag(nodes: list[Summary]) -> dict[str, list[Summary]]:
    graph = nx.Graph()
    by_id = {n.id: n for n in nodes}
    clusters: dict[str, list[Summary]] = {}

    for node in nodes:
        labels = _labels(node)
        if not labels:
            clusters.setdefault(UNTAGGED_KEY, []).append(node)
            continue
        graph.add_node(node.id, kind="summary")
        for label in labels:
            graph.add_node(label, kind="label")
            graph.add_edge(node.id, label)

    for component in nx.connected_components(graph):
        labels = sorted(n for n in component if graph.nodes[n]["kind"] == "label")
        members = [by_id[n] for n in component if graph.nodes[n]["kind"] == "summary"]
        key = labels[0].split(":", 1)[1]
        clusters.setdefault(key, []).extend(members)

    return clusters


def _cluster_by_directory(nodes: list[Summary]) -> dict[str, list[Summary]]:
    clusters: dict[str, list[Summary]] = {}
    for node in nodes:
        source = node.metadata.source_files[0] if node.metadata.source_files else ""
        parent = str(PurePosixPath(source).parent)
        key = ROOT_DIR_KEY if parent in ("", ".") else parent
        clusters.setdefault(key, []).append(node)
    return clusters


def cluster_nodes(nodes: list[Summary], policy: str = "tag") -> dict[str, list[Summary]]:
    """Group node summaries into sections, keyed by section key.

    Raises:
        ValueError: If the policy is unknown.
    """
    if policy == "tag":
        clusters = _cluster_by_tag(nodes)
    elif policy == "directory":
        clusters = _cluster_by_directory(nodes)
    else:
        raise ValueError(f"Unknown clustering policy: '{policy}'. Supported: tag, directory")

    return {
        key: sorted(clusters[key], key=lambda n: n.id)
        for key in sorted(clusters)
    }
