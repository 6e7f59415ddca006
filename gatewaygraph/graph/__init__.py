from .graph import Graph, build_graph

__all__ = ["Graph", "build_graph"]
