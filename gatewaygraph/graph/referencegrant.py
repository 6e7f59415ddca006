# Copyright 2021 Datawire. All rights reserved.
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
from typing import Mapping, Set

from ..fetch.k8sobject import GATEWAY_API_GROUP, KubernetesObject, NamespacedName


@dataclasses.dataclass(frozen=True)
class ToResource:
    group: str
    kind: str
    name: str
    namespace: str


@dataclasses.dataclass(frozen=True)
class FromResource:
    group: str
    kind: str
    namespace: str


def to_secret(nsname: NamespacedName) -> ToResource:
    return ToResource(group="", kind="Secret", name=nsname.name, namespace=nsname.namespace)


def from_gateway(namespace: str) -> FromResource:
    return FromResource(group=GATEWAY_API_GROUP, kind="Gateway", namespace=namespace)


class ReferenceGrantResolver:
    """
    Answers whether a reference from one namespace into another is allowed by
    some ReferenceGrant. A grant lives in the namespace of the objects it
    exposes; a grant "to" entry without a name exposes every object of that
    kind in the namespace.
    """

    def __init__(self, grants: Mapping[NamespacedName, KubernetesObject]) -> None:
        self.allowed: Set[tuple] = set()

        for nsname, grant in grants.items():
            spec = grant.spec

            for to in spec.get("to") or []:
                to_group = to.get("group") or ""

                if to_group == "core":
                    to_group = ""

                to_res = ToResource(
                    group=to_group,
                    kind=to.get("kind") or "",
                    name=to.get("name") or "",
                    namespace=nsname.namespace,
                )

                for frm in spec.get("from") or []:
                    from_res = FromResource(
                        group=frm.get("group") or "",
                        kind=frm.get("kind") or "",
                        namespace=frm.get("namespace") or "",
                    )

                    self.allowed.add((to_res, from_res))

    def ref_allowed(self, to: ToResource, frm: FromResource) -> bool:
        all_in_namespace = dataclasses.replace(to, name="")

        return (to, frm) in self.allowed or (all_in_namespace, frm) in self.allowed
