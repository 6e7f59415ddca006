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
import logging
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Tuple

from ..config import Config
from ..errors import CapacityError, GraphError
from ..fetch.k8sobject import KubernetesObject, NamespacedName
from . import field
from .conditions import Condition, backend_tls_policy_invalid
from .hostname import validate_hostname
from .resolver import ConfigMapResolver

if TYPE_CHECKING:
    from .gateway import Gateway

logger = logging.getLogger("gatewaygraph.backendtlspolicy")

WELL_KNOWN_CA_CERTIFICATES_SYSTEM = "System"


@dataclasses.dataclass
class BackendTLSPolicy:
    source: KubernetesObject
    gateway: NamespacedName
    ca_cert_ref: Optional[NamespacedName] = None
    conditions: List[Condition] = dataclasses.field(default_factory=list)
    valid: bool = False

    # Ignored policies have no room for our ancestor status. They are never
    # valid, and we have nothing to say about them.
    ignored: bool = False

    def as_dict(self) -> Dict[str, Any]:
        return {
            "name": str(self.source.key),
            "gateway": str(self.gateway),
            "ca_cert_ref": str(self.ca_cert_ref) if self.ca_cert_ref else None,
            "valid": self.valid,
            "ignored": self.ignored,
            "conditions": [c.as_dict() for c in self.conditions],
        }


def _validation(policy: KubernetesObject) -> Dict[str, Any]:
    return policy.spec.get("validation") or {}


def validate_ancestor_max_count(
    policy: KubernetesObject,
    controller_name: str,
    gateway: "Gateway",
    max_ancestors: int,
) -> None:
    """
    Raise CapacityError if the policy's ancestor status is already full and
    none of the entries is ours for this Gateway.
    """
    ancestors = policy.status.get("ancestors") or []

    if len(ancestors) < max_ancestors:
        return

    gw_key = gateway.source.key

    for ancestor in ancestors:
        ref = ancestor.get("ancestorRef") or {}

        if (
            ancestor.get("controllerName") == controller_name
            and ref.get("name") == gw_key.name
            and ref.get("namespace") == gw_key.namespace
        ):
            return

    raise CapacityError("too many ancestors, cannot attach a new Gateway")


def validate_backend_tls_hostname(policy: KubernetesObject) -> Optional[field.FieldError]:
    hostname = _validation(policy).get("hostname") or ""
    reason = validate_hostname(hostname)

    if reason:
        return field.invalid(field.Path("tls.hostname"), hostname, reason)

    return None


def validate_backend_tls_ca_cert_ref(
    policy: KubernetesObject, config_map_resolver: ConfigMapResolver
) -> Optional[field.FieldError]:
    refs = _validation(policy).get("caCertificateRefs") or []

    if len(refs) != 1:
        return field.too_many(field.Path("tls.cacertrefs"), len(refs), 1)

    ref = refs[0]
    kind = ref.get("kind") or ""
    group = ref.get("group") or ""

    if kind != "ConfigMap":
        return field.not_supported(field.Path("tls.cacertrefs[0].kind"), kind, ["ConfigMap"])

    if group not in ("", "core"):
        return field.not_supported(field.Path("tls.cacertrefs[0].group"), group, ["", "core"])

    nsname = NamespacedName(policy.namespace, ref.get("name") or "")
    error = config_map_resolver.resolve(nsname)

    if error:
        return field.invalid(field.Path("tls.cacertrefs[0]"), ref, str(error))

    return None


def validate_backend_tls_well_known_ca_certs(policy: KubernetesObject) -> Optional[field.FieldError]:
    well_known = _validation(policy).get("wellKnownCACertificates")

    if well_known != WELL_KNOWN_CA_CERTIFICATES_SYSTEM:
        return field.not_supported(
            field.Path("tls.wellknowncacertificates"),
            well_known,
            [WELL_KNOWN_CA_CERTIFICATES_SYSTEM],
        )

    return None


def validate_backend_tls_policy(
    policy: KubernetesObject,
    config_map_resolver: ConfigMapResolver,
    controller_name: str,
    gateway: "Gateway",
    max_ancestors: Optional[int] = None,
) -> Tuple[bool, bool, Optional[NamespacedName], List[Condition]]:
    """
    Validate a BackendTLSPolicy on behalf of the given Gateway.

    Returns (valid, ignored, ca_cert_ref, conditions). ca_cert_ref is the
    ConfigMap holding the CA certificate, if the policy is valid and uses one.
    An ignored policy is never valid and gets no conditions.
    """

    if max_ancestors is None:
        max_ancestors = Config.max_policy_ancestors

    valid = True
    ignored = False
    conds: List[Condition] = []

    try:
        validate_ancestor_max_count(policy, controller_name, gateway, max_ancestors)
    except CapacityError as e:
        logger.debug(f"BackendTLSPolicy {policy.key}: ignored: {e}")
        valid = False
        ignored = True

    err: Optional[GraphError] = validate_backend_tls_hostname(policy)

    if err:
        valid = False
        conds.append(backend_tls_policy_invalid(f"invalid hostname: {err}"))

    validation = _validation(policy)
    ca_cert_refs = validation.get("caCertificateRefs") or []
    well_known = validation.get("wellKnownCACertificates")

    if ca_cert_refs and (well_known is not None):
        valid = False
        conds.append(
            backend_tls_policy_invalid(
                "CACertificateRefs and WellKnownCACertificates are mutually exclusive"
            )
        )
    elif ca_cert_refs:
        err = validate_backend_tls_ca_cert_ref(policy, config_map_resolver)

        if err:
            valid = False
            conds.append(backend_tls_policy_invalid(f"invalid CACertificateRef: {err}"))
    elif well_known is not None:
        err = validate_backend_tls_well_known_ca_certs(policy)

        if err:
            valid = False
            conds.append(backend_tls_policy_invalid(f"invalid WellKnownCACertificates: {err}"))
    else:
        valid = False
        conds.append(backend_tls_policy_invalid("CACertRefs and WellKnownCACerts are both nil"))

    if ignored:
        return False, True, None, []

    ca_cert_ref = None

    if valid and ca_cert_refs:
        ca_cert_ref = NamespacedName(policy.namespace, ca_cert_refs[0].get("name") or "")

    return valid, ignored, ca_cert_ref, conds


def process_backend_tls_policies(
    policies: Mapping[NamespacedName, KubernetesObject],
    config_map_resolver: ConfigMapResolver,
    controller_name: str,
    gateway: Optional["Gateway"],
    max_ancestors: Optional[int] = None,
) -> Dict[NamespacedName, BackendTLSPolicy]:
    if not policies or gateway is None:
        return {}

    processed: Dict[NamespacedName, BackendTLSPolicy] = {}

    for nsname, policy in policies.items():
        valid, ignored, ca_cert_ref, conds = validate_backend_tls_policy(
            policy, config_map_resolver, controller_name, gateway, max_ancestors=max_ancestors
        )

        processed[nsname] = BackendTLSPolicy(
            source=policy,
            gateway=gateway.source.key,
            ca_cert_ref=ca_cert_ref,
            conditions=conds,
            valid=valid,
            ignored=ignored,
        )

    return processed
