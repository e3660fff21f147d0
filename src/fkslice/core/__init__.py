from fkslice.core.engine import SubsetEngine, SubsetRun
from fkslice.core.graph import build_graph
from fkslice.core.resolver import DependencyResolver, DependencyResult, ResolutionNotice

__all__ = [
    "SubsetEngine",
    "SubsetRun",
    "build_graph",
    "DependencyResolver",
    "DependencyResult",
    "ResolutionNotice",
]
