from .k8sobject import KubernetesGVK, KubernetesObject, NamespacedName
from .snapshot import ClusterState

__all__ = ["ClusterState", "KubernetesGVK", "KubernetesObject", "NamespacedName"]
