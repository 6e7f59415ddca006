from .config import Config
from .fetch import ClusterState, KubernetesObject, NamespacedName
from .graph import Graph, build_graph
from .VERSION import Version

__all__ = [
    "ClusterState",
    "Config",
    "Graph",
    "KubernetesObject",
    "NamespacedName",
    "Version",
    "build_graph",
]
