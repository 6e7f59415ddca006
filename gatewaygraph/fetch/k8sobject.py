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

from __future__ import annotations

import collections.abc
import dataclasses
from typing import Any, Dict, Iterator, List, Optional

from ..config import Config

GATEWAY_API_GROUP = "gateway.networking.k8s.io"
NGINX_GATEWAY_GROUP = "gateway.nginx.org"


@dataclasses.dataclass(frozen=True)
class KubernetesGVK:
    """
    Represents a Kubernetes resource type (API group, version and kind).
    """

    api_version: str
    kind: str

    @property
    def api_group(self) -> Optional[str]:
        # These are backward-indexed to support apiVersion: v1, which has a
        # version but no group.
        try:
            return self.api_version.split("/", 1)[-2]
        except IndexError:
            return None

    @property
    def domain(self) -> str:
        if self.api_group:
            return f"{self.kind.lower()}.{self.api_group}"
        else:
            return self.kind.lower()


@dataclasses.dataclass(frozen=True, order=True)
class NamespacedName:
    """
    The (namespace, name) pair that identifies a namespaced Kubernetes object.
    """

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"

    def as_dict(self) -> Dict[str, str]:
        return {"namespace": self.namespace, "name": self.name}


class KubernetesObject(collections.abc.Mapping):
    """
    Represents a raw object from Kubernetes.
    """

    def __init__(self, delegate: Dict[str, Any]) -> None:
        self.delegate = delegate

        try:
            self.gvk
            self.name
        except (KeyError, TypeError):
            raise ValueError("delegate is not a valid Kubernetes object")

    def __getitem__(self, key: str) -> Any:
        return self.delegate[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self.delegate)

    def __len__(self) -> int:
        return len(self.delegate)

    def __repr__(self) -> str:
        return f"<KubernetesObject {self.gvk.domain} {self.key}>"

    @property
    def gvk(self) -> KubernetesGVK:
        return KubernetesGVK(self["apiVersion"], self["kind"])

    @property
    def kind(self) -> str:
        return self.gvk.kind

    @property
    def metadata(self) -> Dict[str, Any]:
        return self["metadata"]

    @property
    def namespace(self) -> str:
        return self.metadata.get("namespace") or Config.default_namespace

    @property
    def name(self) -> str:
        return self.metadata["name"]

    @property
    def key(self) -> NamespacedName:
        return NamespacedName(self.namespace, self.name)

    @property
    def creation_timestamp(self) -> str:
        # RFC 3339 timestamps in UTC sort correctly as strings.
        return self.metadata.get("creationTimestamp") or ""

    @property
    def spec(self) -> Dict[str, Any]:
        return self.get("spec") or {}

    @property
    def status(self) -> Dict[str, Any]:
        return self.get("status") or {}


def sort_key(obj: KubernetesObject):
    """
    Oldest first, then by namespace and name, so that picking a winner among
    otherwise equal objects is stable across builds.
    """
    return (obj.creation_timestamp, obj.namespace, obj.name)


def sorted_objects(objects: List[KubernetesObject]) -> List[KubernetesObject]:
    return sorted(objects, key=sort_key)
