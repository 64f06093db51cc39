"""Summary hierarchy: models, section clustering and tree validation.

The compiler lives in :mod:`membank.hierarchy.compiler`.
"""

from membank.hierarchy.clustering import cluster_nodes
from membank.hierarchy.models import (
    CompilationOptions,
    StaleHierarchyWarning,
    Summary,
    SummaryHierarchy,
    SummaryLevel,
    SummaryMetadata,
    SummaryState,
    SummaryType,
)
from membank.hierarchy.validate import validate_hierarchy

__all__ = [
    "CompilationOptions",
    "StaleHierarchyWarning",
    "Summary",
    "SummaryHierarchy",
    "SummaryLevel",
    "SummaryMetadata",
    "SummaryState",
    "SummaryType",
    "cluster_nodes",
    "validate_hierarchy",
]
