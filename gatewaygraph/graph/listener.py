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

########
# Gateway listeners.
#
# Each listener goes through a ListenerConfigurator picked by its protocol.
# A configurator runs three kinds of things, in order:
#
# - validators look at the listener by itself. They all run, and each one
#   says whether routes may still attach to the listener. Any condition from
#   a validator makes the listener invalid.
# - conflict resolvers compare the listener to the ones before it.
# - external reference resolvers chase references out of the Gateway.
#
# Resolvers only run for listeners that are still valid. Conditions here
# carry field paths relative to the listener ("port", "tls.mode") since the
# Gateway status already says which listener they belong to.

import dataclasses
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from ..fetch.k8sobject import GATEWAY_API_GROUP, NamespacedName
from . import field
from .conditions import (
    Condition,
    listener_hostname_conflict,
    listener_invalid_certificate_ref,
    listener_invalid_route_kinds,
    listener_protocol_conflict,
    listener_ref_not_permitted,
    listener_unsupported_protocol,
    listener_unsupported_value,
)
from .hostname import have_overlap, validate_hostname
from .referencegrant import ReferenceGrantResolver, from_gateway, to_secret
from .resolver import SecretResolver

logger = logging.getLogger("gatewaygraph.listener")

HTTP = "HTTP"
HTTPS = "HTTPS"
TLS = "TLS"

SUPPORTED_PROTOCOLS = [HTTP, HTTPS, TLS]

TLS_MODE_TERMINATE = "Terminate"
TLS_MODE_PASSTHROUGH = "Passthrough"

NAMESPACES_FROM_SELECTOR = "Selector"

MIN_PORT = 1
MAX_PORT = 65535

_route_kinds_for_protocol: Dict[str, List[str]] = {
    HTTP: ["HTTPRoute", "GRPCRoute"],
    HTTPS: ["HTTPRoute", "GRPCRoute"],
    TLS: ["TLSRoute"],
}


class LabelSelector:
    """
    A parsed Kubernetes label selector: matchLabels plus matchExpressions,
    all of which must hold.
    """

    OPERATORS = ("In", "NotIn", "Exists", "DoesNotExist")

    def __init__(
        self,
        match_labels: Optional[Mapping[str, str]] = None,
        match_expressions: Optional[List[Tuple[str, str, List[str]]]] = None,
    ) -> None:
        self.match_labels = dict(match_labels or {})
        self.match_expressions = list(match_expressions or [])

    @classmethod
    def parse(cls, selector: Mapping[str, Any]) -> "LabelSelector":
        """
        Parse a selector from its manifest form. Raises ValueError describing
        the first problem found.
        """
        match_labels = selector.get("matchLabels") or {}

        for key, value in match_labels.items():
            if not key or not isinstance(key, str):
                raise ValueError(
                    f"key: Invalid value: {field.format_value(key)}: name part must be non-empty"
                )

            if not isinstance(value, str):
                raise ValueError(
                    f"matchLabels: Invalid value: {field.format_value(value)}: "
                    "label values must be strings"
                )

        expressions = []

        for expr in selector.get("matchExpressions") or []:
            key = expr.get("key") or ""
            operator = expr.get("operator") or ""
            values = expr.get("values") or []

            if not key:
                raise ValueError('key: Invalid value: "": name part must be non-empty')

            if operator in ("In", "NotIn"):
                if not values:
                    raise ValueError(
                        f"values: Invalid value: {field.format_value(values)}: "
                        "for 'in', 'notin' operators, values set can't be empty"
                    )
            elif operator in ("Exists", "DoesNotExist"):
                if values:
                    raise ValueError(
                        f"values: Invalid value: {field.format_value(values)}: "
                        "values set must be empty for exists and does not exist"
                    )
            else:
                raise ValueError(f"{field.format_value(operator)} is not a valid label selector operator")

            expressions.append((key, operator, [str(v) for v in values]))

        return cls(match_labels, expressions)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "matchLabels": self.match_labels,
            "matchExpressions": [
                {"key": k, "operator": op, "values": v} for k, op, v in self.match_expressions
            ],
        }


@dataclasses.dataclass
class Listener:
    name: str
    source: Dict[str, Any]
    conditions: List[Condition] = dataclasses.field(default_factory=list)

    # Valid means we can generate configuration for the listener. Attachable
    # means routes may attach to it. An invalid listener can be attachable.
    valid: bool = True
    attachable: bool = True

    supported_kinds: List[Dict[str, str]] = dataclasses.field(default_factory=list)
    allowed_route_label_selector: Optional[LabelSelector] = None

    # HTTPS only: the Secret holding our certificate.
    resolved_secret: Optional[NamespacedName] = None

    @property
    def protocol(self) -> str:
        return self.source.get("protocol") or ""

    @property
    def port(self) -> Any:
        return self.source.get("port")

    @property
    def hostname(self) -> Optional[str]:
        return self.source.get("hostname")

    def invalidate(self, conds: List[Condition]) -> None:
        self.valid = False
        self.conditions.extend(conds)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "protocol": self.protocol,
            "port": self.port,
            "hostname": self.hostname,
            "valid": self.valid,
            "attachable": self.attachable,
            "supported_kinds": self.supported_kinds,
            "allowed_route_label_selector": (
                self.allowed_route_label_selector.as_dict()
                if self.allowed_route_label_selector
                else None
            ),
            "resolved_secret": str(self.resolved_secret) if self.resolved_secret else None,
            "conditions": [c.as_dict() for c in self.conditions],
        }


ListenerValidator = Callable[[Dict[str, Any]], Tuple[List[Condition], bool]]
ListenerResolver = Callable[[Listener], None]


########
# Validators shared by every protocol


def get_and_validate_supported_kinds(
    listener: Dict[str, Any]
) -> Tuple[List[Condition], List[Dict[str, str]]]:
    """
    Work out which route kinds may attach to the listener. Kinds listed in
    allowedRoutes that the protocol doesn't support are reported and dropped;
    with no list at all, every kind the protocol supports is allowed.
    """
    protocol = listener.get("protocol") or ""
    legal = _route_kinds_for_protocol.get(protocol, [])

    allowed_routes = listener.get("allowedRoutes") or {}
    kinds = allowed_routes.get("kinds")

    if kinds is None:
        return [], [{"group": GATEWAY_API_GROUP, "kind": k} for k in legal]

    conds: List[Condition] = []
    supported: List[Dict[str, str]] = []

    for rgk in kinds:
        group = rgk.get("group")
        kind = rgk.get("kind") or ""

        if group is None:
            group = GATEWAY_API_GROUP

        if group != GATEWAY_API_GROUP or kind not in legal:
            msg = f'Unsupported route kind for protocol {protocol} "{group}/{kind}"'
            conds.extend(listener_invalid_route_kinds(msg))
            continue

        supported.append({"group": group, "kind": kind})

    return conds, supported


def validate_listener_allowed_route_kind(listener: Dict[str, Any]) -> Tuple[List[Condition], bool]:
    conds, _ = get_and_validate_supported_kinds(listener)
    return conds, not conds


def get_allowed_route_label_selector(listener: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    namespaces = (listener.get("allowedRoutes") or {}).get("namespaces") or {}

    if namespaces.get("from") == NAMESPACES_FROM_SELECTOR:
        return namespaces.get("selector")

    return None


def validate_listener_label_selector(listener: Dict[str, Any]) -> Tuple[List[Condition], bool]:
    namespaces = (listener.get("allowedRoutes") or {}).get("namespaces") or {}

    if namespaces.get("from") == NAMESPACES_FROM_SELECTOR and namespaces.get("selector") is None:
        msg = "Listener's AllowedRoutes Selector must be set when From is set to type Selector"
        return listener_unsupported_value(msg), False

    return [], True


def validate_listener_hostname(listener: Dict[str, Any]) -> Tuple[List[Condition], bool]:
    hostname = listener.get("hostname")

    if not hostname:
        return [], True

    reason = validate_hostname(hostname)

    if reason:
        err = field.invalid(field.Path("hostname"), hostname, reason)
        return listener_unsupported_value(str(err)), False

    return [], True


def validate_listener_port(port: Any, protected_ports: Mapping[int, str]) -> Optional[str]:
    if isinstance(port, bool) or not isinstance(port, int) or not (MIN_PORT <= port <= MAX_PORT):
        return f"port must be between {MIN_PORT}-{MAX_PORT}"

    if port in protected_ports:
        return f"port is already in use as {protected_ports[port]}"

    return None


def _port_conditions(listener: Dict[str, Any], protected_ports: Mapping[int, str]) -> List[Condition]:
    port = listener.get("port")
    reason = validate_listener_port(port, protected_ports)

    if reason:
        return listener_unsupported_value(str(field.invalid(field.Path("port"), port, reason)))

    return []


########
# Per-protocol validators


def create_http_listener_validator(protected_ports: Mapping[int, str]) -> ListenerValidator:
    def validate_http_listener(listener: Dict[str, Any]) -> Tuple[List[Condition], bool]:
        conds = _port_conditions(listener, protected_ports)

        if listener.get("tls") is not None:
            err = field.forbidden(field.Path("tls"), "tls is not supported for HTTP listener")
            conds.extend(listener_unsupported_value(str(err)))

        return conds, True

    return validate_http_listener


def create_https_listener_validator(protected_ports: Mapping[int, str]) -> ListenerValidator:
    def validate_https_listener(listener: Dict[str, Any]) -> Tuple[List[Condition], bool]:
        conds = _port_conditions(listener, protected_ports)

        tls = listener.get("tls")

        if tls is None:
            err = field.required(field.Path("TLS"), "tls must be defined for HTTPS listener")
            conds.extend(listener_unsupported_value(str(err)))
            return conds, True

        tls_path = field.Path("tls")

        mode = tls.get("mode") or TLS_MODE_TERMINATE

        if mode != TLS_MODE_TERMINATE:
            err = field.not_supported(tls_path.child("mode"), mode, [TLS_MODE_TERMINATE])
            conds.extend(listener_unsupported_value(str(err)))

        if tls.get("options"):
            err = field.forbidden(tls_path.child("options"), "options are not supported")
            conds.extend(listener_unsupported_value(str(err)))

        cert_refs = tls.get("certificateRefs") or []

        if not cert_refs:
            err = field.required(
                tls_path.child("certificateRefs"),
                "certificateRefs must be defined for TLS mode terminate",
            )
            conds.extend(listener_invalid_certificate_ref(str(err)))
            return conds, True

        cert_ref = cert_refs[0]
        cert_ref_path = tls_path.child("certificateRefs").index(0)

        kind = cert_ref.get("kind")

        if kind is not None and kind != "Secret":
            err = field.not_supported(cert_ref_path.child("kind"), kind, ["Secret"])
            conds.extend(listener_invalid_certificate_ref(str(err)))

        group = cert_ref.get("group")

        if group:
            err = field.not_supported(cert_ref_path.child("group"), group, [""])
            conds.extend(listener_invalid_certificate_ref(str(err)))

        if len(cert_refs) > 1:
            err = field.too_many(tls_path.child("certificateRefs"), len(cert_refs), 1)
            conds.extend(listener_unsupported_value(str(err)))

        return conds, True

    return validate_https_listener


def validate_tls_field_on_tls_listener(listener: Dict[str, Any]) -> Tuple[List[Condition], bool]:
    tls_path = field.Path("TLS")
    tls = listener.get("tls")

    if tls is None:
        err = field.required(tls_path, "tls must be defined for TLS listener")
        return listener_unsupported_value(str(err)), False

    if tls.get("mode") != TLS_MODE_PASSTHROUGH:
        err = field.required(tls_path.child("Mode"), "Mode must be passthrough for TLS listener")
        return listener_unsupported_value(str(err)), False

    return [], True


def validate_unsupported_protocol(listener: Dict[str, Any]) -> Tuple[List[Condition], bool]:
    err = field.not_supported(field.Path("protocol"), listener.get("protocol"), SUPPORTED_PROTOCOLS)
    return listener_unsupported_protocol(str(err)), False


########
# Resolvers


class PortConflictResolver:
    """
    Finds listeners that share a port but can't share it. HTTP can't share a
    port with HTTPS or TLS; HTTPS and TLS can share a port as long as their
    hostnames don't overlap.

    One PortConflictResolver is shared by all the configurators for a
    Gateway, and must see the listeners in order.
    """

    SECURE = "secure"
    INSECURE = "insecure"

    protocol_groups = {
        HTTP: INSECURE,
        HTTPS: SECURE,
        TLS: SECURE,
    }

    PROTOCOL_CONFLICT = (
        "Multiple listeners for the same port %d specify incompatible protocols; "
        "ensure only one protocol per port"
    )

    HOSTNAME_CONFLICT = (
        "HTTPS and TLS listeners for the same port %d specify overlapping hostnames; "
        "ensure no overlapping hostnames for HTTPS and TLS listeners for the same port"
    )

    def __init__(self) -> None:
        self.conflicted_ports: Dict[int, bool] = {}
        self.port_protocol_owner: Dict[int, str] = {}
        self.listeners_by_port: Dict[int, List[Listener]] = {}

    def __call__(self, listener: Listener) -> None:
        port = listener.port
        group = self.protocol_groups.get(listener.protocol)

        if self.conflicted_ports.get(port):
            listener.invalidate(listener_protocol_conflict(self.PROTOCOL_CONFLICT % port))
            return

        owner = self.port_protocol_owner.get(port)

        if owner is None:
            self.port_protocol_owner[port] = group
            self.listeners_by_port[port] = [listener]
            return

        if owner != group:
            self.conflicted_ports[port] = True

            for other in self.listeners_by_port[port]:
                other.invalidate(listener_protocol_conflict(self.PROTOCOL_CONFLICT % port))

            listener.invalidate(listener_protocol_conflict(self.PROTOCOL_CONFLICT % port))
        else:
            found_conflict = False

            for other in self.listeners_by_port[port]:
                if other.protocol != listener.protocol and have_overlap(
                    listener.hostname, other.hostname
                ):
                    other.invalidate(listener_hostname_conflict(self.HOSTNAME_CONFLICT % port))
                    found_conflict = True

            if found_conflict:
                listener.invalidate(listener_hostname_conflict(self.HOSTNAME_CONFLICT % port))

        self.listeners_by_port[port].append(listener)


class TLSSecretResolver:
    """
    Resolves the certificate Secret for an HTTPS listener. A Secret in some
    other namespace than the Gateway needs a ReferenceGrant.
    """

    def __init__(
        self,
        gateway_namespace: str,
        secret_resolver: SecretResolver,
        ref_grant_resolver: ReferenceGrantResolver,
    ) -> None:
        self.gateway_namespace = gateway_namespace
        self.secret_resolver = secret_resolver
        self.ref_grant_resolver = ref_grant_resolver

    def __call__(self, listener: Listener) -> None:
        cert_ref = listener.source["tls"]["certificateRefs"][0]

        nsname = NamespacedName(
            cert_ref.get("namespace") or self.gateway_namespace, cert_ref.get("name") or ""
        )

        if nsname.namespace != self.gateway_namespace:
            if not self.ref_grant_resolver.ref_allowed(
                to_secret(nsname), from_gateway(self.gateway_namespace)
            ):
                msg = f"Certificate ref to secret {nsname} not permitted by any ReferenceGrant"
                listener.invalidate(listener_ref_not_permitted(msg))
                return

        error = self.secret_resolver.resolve(nsname)

        if error:
            path = field.Path("tls", "certificateRefs").index(0)
            err = field.invalid(path, nsname.as_dict(), str(error))
            listener.invalidate(listener_invalid_certificate_ref(str(err)))
        else:
            listener.resolved_secret = nsname


########
# Configurators


class ListenerConfigurator:
    def __init__(
        self,
        validators: List[ListenerValidator],
        conflict_resolvers: Optional[List[ListenerResolver]] = None,
        external_reference_resolvers: Optional[List[ListenerResolver]] = None,
    ) -> None:
        self.validators = validators
        self.conflict_resolvers = conflict_resolvers or []
        self.external_reference_resolvers = external_reference_resolvers or []

    def configure(self, source: Dict[str, Any]) -> Listener:
        conds: List[Condition] = []
        attachable = True

        for validator in self.validators:
            v_conds, v_attachable = validator(source)
            conds.extend(v_conds)
            attachable = attachable and v_attachable

        valid = not conds

        selector = None
        raw_selector = get_allowed_route_label_selector(source)

        if raw_selector is not None:
            try:
                selector = LabelSelector.parse(raw_selector)
            except ValueError as e:
                conds.extend(listener_unsupported_value(f"invalid label selector: {e}"))
                valid = False

        _, supported_kinds = get_and_validate_supported_kinds(source)

        listener = Listener(
            name=source.get("name") or "",
            source=source,
            conditions=conds,
            valid=valid,
            attachable=attachable,
            supported_kinds=supported_kinds,
            allowed_route_label_selector=selector,
        )

        if not listener.valid:
            return listener

        for resolver in self.conflict_resolvers:
            resolver(listener)

        for resolver in self.external_reference_resolvers:
            resolver(listener)

        return listener


class ListenerConfiguratorFactory:
    """
    Hands out the configurator for a listener's protocol. All configurators
    from one factory share one PortConflictResolver, so use one factory per
    Gateway.
    """

    def __init__(
        self,
        gateway_namespace: str,
        secret_resolver: SecretResolver,
        ref_grant_resolver: ReferenceGrantResolver,
        protected_ports: Mapping[int, str],
    ) -> None:
        port_conflict_resolver = PortConflictResolver()

        self.unsupported_protocol = ListenerConfigurator(
            validators=[validate_unsupported_protocol],
        )

        self.http = ListenerConfigurator(
            validators=[
                validate_listener_allowed_route_kind,
                validate_listener_label_selector,
                validate_listener_hostname,
                create_http_listener_validator(protected_ports),
            ],
            conflict_resolvers=[port_conflict_resolver],
        )

        self.https = ListenerConfigurator(
            validators=[
                validate_listener_allowed_route_kind,
                validate_listener_label_selector,
                validate_listener_hostname,
                create_https_listener_validator(protected_ports),
            ],
            conflict_resolvers=[port_conflict_resolver],
            external_reference_resolvers=[
                TLSSecretResolver(gateway_namespace, secret_resolver, ref_grant_resolver)
            ],
        )

        self.tls = ListenerConfigurator(
            validators=[
                validate_listener_allowed_route_kind,
                validate_listener_label_selector,
                validate_listener_hostname,
                validate_tls_field_on_tls_listener,
            ],
            conflict_resolvers=[port_conflict_resolver],
        )

    def get_configurator_for_listener(self, listener: Dict[str, Any]) -> ListenerConfigurator:
        protocol = listener.get("protocol")

        if protocol == HTTP:
            return self.http

        if protocol == HTTPS:
            return self.https

        if protocol == TLS:
            return self.tls

        return self.unsupported_protocol


def build_listeners(
    gateway_namespace: str,
    listeners: List[Dict[str, Any]],
    secret_resolver: SecretResolver,
    ref_grant_resolver: ReferenceGrantResolver,
    protected_ports: Mapping[int, str],
) -> List[Listener]:
    factory = ListenerConfiguratorFactory(
        gateway_namespace, secret_resolver, ref_grant_resolver, protected_ports
    )

    built = []

    for source in listeners:
        listener = factory.get_configurator_for_listener(source).configure(source)

        if not listener.valid:
            logger.debug(f"listener {listener.name}: invalid, {len(listener.conditions)} conditions")

        built.append(listener)

    return built
