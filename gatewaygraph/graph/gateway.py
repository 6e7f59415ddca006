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
from typing import Any, Dict, List, Mapping, Optional, Tuple

from ..fetch.k8sobject import KubernetesObject, NamespacedName, sorted_objects
from . import field
from .conditions import Condition, gateway_unsupported_value
from .listener import Listener, build_listeners
from .referencegrant import ReferenceGrantResolver
from .resolver import SecretResolver


@dataclasses.dataclass
class Gateway:
    source: KubernetesObject
    listeners: List[Listener] = dataclasses.field(default_factory=list)
    conditions: List[Condition] = dataclasses.field(default_factory=list)
    valid: bool = False

    def as_dict(self) -> Dict[str, Any]:
        return {
            "name": str(self.source.key),
            "valid": self.valid,
            "listeners": [l.as_dict() for l in self.listeners],
            "conditions": [c.as_dict() for c in self.conditions],
        }


def process_gateways(
    gateways: Mapping[NamespacedName, KubernetesObject], gateway_class_name: str
) -> Tuple[Optional[KubernetesObject], Dict[NamespacedName, KubernetesObject]]:
    """
    Pick the Gateway we're going to program from the ones using our
    GatewayClass: the oldest one, with ties broken by namespace and name.
    Returns the winner (or None) and the others, which we ignore.
    """
    ours = [gw for gw in gateways.values() if gw.spec.get("gatewayClassName") == gateway_class_name]

    if not ours:
        return None, {}

    ours = sorted_objects(ours)

    return ours[0], {gw.key: gw for gw in ours[1:]}


def validate_gateway(source: KubernetesObject) -> List[Condition]:
    conds: List[Condition] = []

    if source.spec.get("addresses"):
        err = field.forbidden(field.Path("spec", "addresses"), "addresses are not supported")
        conds.extend(gateway_unsupported_value(str(err)))

    return conds


def build_gateway(
    source: Optional[KubernetesObject],
    secret_resolver: SecretResolver,
    ref_grant_resolver: ReferenceGrantResolver,
    protected_ports: Mapping[int, str],
) -> Optional[Gateway]:
    if source is None:
        return None

    conds = validate_gateway(source)

    if conds:
        return Gateway(source=source, conditions=conds, valid=False)

    listeners = build_listeners(
        source.namespace,
        source.spec.get("listeners") or [],
        secret_resolver,
        ref_grant_resolver,
        protected_ports,
    )

    return Gateway(source=source, listeners=listeners, valid=True)
