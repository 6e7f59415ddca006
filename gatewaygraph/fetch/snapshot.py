# Copyright 2020 Datawire. All rights reserved.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License

import dataclasses
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..config import Config
from ..utils import parse_json, parse_yaml
from .k8sobject import GATEWAY_API_GROUP, NGINX_GATEWAY_GROUP, KubernetesObject, NamespacedName

ObjectMap = Dict[NamespacedName, KubernetesObject]

# (API group, kind) -> ClusterState attribute. Versions don't matter to us.
_buckets: Dict[Tuple[str, str], str] = {
    ("", "Secret"): "secrets",
    ("", "ConfigMap"): "config_maps",
    (GATEWAY_API_GROUP, "Gateway"): "gateways",
    (GATEWAY_API_GROUP, "BackendTLSPolicy"): "backend_tls_policies",
    (GATEWAY_API_GROUP, "ReferenceGrant"): "reference_grants",
    (GATEWAY_API_GROUP, "HTTPRoute"): "http_routes",
    (GATEWAY_API_GROUP, "GRPCRoute"): "grpc_routes",
    (NGINX_GATEWAY_GROUP, "SnippetsFilter"): "snippets_filters",
}


@dataclasses.dataclass
class ClusterState:
    """
    A consistent snapshot of the cluster objects a graph build looks at,
    each kind keyed by namespaced name.
    """

    gateways: ObjectMap = dataclasses.field(default_factory=dict)
    secrets: ObjectMap = dataclasses.field(default_factory=dict)
    config_maps: ObjectMap = dataclasses.field(default_factory=dict)
    backend_tls_policies: ObjectMap = dataclasses.field(default_factory=dict)
    reference_grants: ObjectMap = dataclasses.field(default_factory=dict)
    http_routes: ObjectMap = dataclasses.field(default_factory=dict)
    grpc_routes: ObjectMap = dataclasses.field(default_factory=dict)
    snippets_filters: ObjectMap = dataclasses.field(default_factory=dict)

    def add(self, obj: KubernetesObject, logger: Optional[logging.Logger] = None) -> bool:
        """
        File obj under the right kind. Returns False (and drops obj) if it's
        not a kind we care about.
        """
        logger = logger or logging.getLogger("gatewaygraph.fetch")

        bucket_name = _buckets.get((obj.gvk.api_group or "", obj.kind))

        if not bucket_name:
            logger.debug(f"skipping {obj.gvk.domain} {obj.key}: not a kind we use")
            return False

        bucket: ObjectMap = getattr(self, bucket_name)

        if obj.key in bucket:
            logger.warning(f"{obj.kind} {obj.key} appears more than once; using the last one")

        if Config.log_resources:
            logger.debug(f"adding {obj.kind} {obj.key}")

        bucket[obj.key] = obj
        return True

    def counts(self) -> Dict[str, int]:
        return {f.name: len(getattr(self, f.name)) for f in dataclasses.fields(self)}

    @classmethod
    def from_objects(
        cls, objects: Iterable[Any], logger: Optional[logging.Logger] = None
    ) -> "ClusterState":
        """
        Build a ClusterState from raw objects. Lists (kind: List, or a plain
        list) are flattened, as are watt-style {"Kubernetes": {kind: [...]}}
        snapshots. Anything that isn't a usable Kubernetes object is skipped
        with a warning.
        """
        logger = logger or logging.getLogger("gatewaygraph.fetch")
        state = cls()

        for raw in _flatten(objects):
            try:
                obj = KubernetesObject(raw)
            except ValueError:
                logger.warning(f"skipping malformed object: {raw!r:.200}")
                continue

            state.add(obj, logger)

        return state

    @classmethod
    def from_yaml(cls, serialization: str, logger: Optional[logging.Logger] = None) -> "ClusterState":
        return cls.from_objects(parse_yaml(serialization), logger)

    @classmethod
    def from_json(cls, serialization: str, logger: Optional[logging.Logger] = None) -> "ClusterState":
        return cls.from_objects([parse_json(serialization)], logger)

    @classmethod
    def from_file(cls, path: str, logger: Optional[logging.Logger] = None) -> "ClusterState":
        with open(path, "r") as f:
            serialization = f.read()

        if path.lower().endswith(".json"):
            return cls.from_json(serialization, logger)

        return cls.from_yaml(serialization, logger)


def _flatten(objects: Iterable[Any]) -> List[Any]:
    flat: List[Any] = []

    for obj in objects:
        if obj is None:
            # Empty YAML documents.
            continue

        if isinstance(obj, list):
            flat.extend(_flatten(obj))
        elif isinstance(obj, dict) and obj.get("kind") == "List":
            flat.extend(_flatten(obj.get("items") or []))
        elif isinstance(obj, dict) and "Kubernetes" in obj and "kind" not in obj:
            for kind_objs in (obj.get("Kubernetes") or {}).values():
                flat.extend(_flatten(kind_objs or []))
        else:
            flat.append(obj)

    return flat
