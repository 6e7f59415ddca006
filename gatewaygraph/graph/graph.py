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
import itertools
import logging
from typing import Any, Dict, Mapping, Optional

from ..config import Config
from ..fetch.k8sobject import KubernetesObject, NamespacedName
from ..fetch.snapshot import ClusterState
from ..utils import Timer
from .backendtlspolicy import BackendTLSPolicy, process_backend_tls_policies
from .gateway import Gateway, build_gateway, process_gateways
from .referencegrant import ReferenceGrantResolver
from .resolver import CACertConfigMap, ConfigMapResolver, Secret, SecretResolver
from .snippetsfilter import SnippetsFilter, process_snippets_filters, snippets_filter_resolver


@dataclasses.dataclass
class Graph:
    """
    The validated, cross-referenced view of the cluster that configuration
    generation works from. Everything in here has been looked at; invalid
    things are still here, carrying the conditions that say why.
    """

    gateway: Optional[Gateway] = None
    ignored_gateways: Dict[NamespacedName, KubernetesObject] = dataclasses.field(default_factory=dict)
    referenced_secrets: Mapping[NamespacedName, Secret] = dataclasses.field(default_factory=dict)
    referenced_ca_cert_configmaps: Mapping[NamespacedName, CACertConfigMap] = dataclasses.field(
        default_factory=dict
    )
    backend_tls_policies: Dict[NamespacedName, BackendTLSPolicy] = dataclasses.field(
        default_factory=dict
    )
    snippets_filters: Dict[NamespacedName, SnippetsFilter] = dataclasses.field(default_factory=dict)

    def is_referenced(self, kind: str, nsname: NamespacedName) -> bool:
        """
        Is the Secret or ConfigMap named nsname part of the graph? Resolution
        failures count: a dangling or broken reference still references.
        """
        if kind == "Secret":
            return nsname in self.referenced_secrets

        if kind == "ConfigMap":
            return nsname in self.referenced_ca_cert_configmaps

        return False

    def as_dict(self) -> Dict[str, Any]:
        return {
            "gateway": self.gateway.as_dict() if self.gateway else None,
            "ignored_gateways": sorted(str(k) for k in self.ignored_gateways),
            "referenced_secrets": {
                str(k): v.as_dict() for k, v in sorted(self.referenced_secrets.items())
            },
            "referenced_ca_cert_configmaps": {
                str(k): v.as_dict() for k, v in sorted(self.referenced_ca_cert_configmaps.items())
            },
            "backend_tls_policies": {
                str(k): v.as_dict() for k, v in sorted(self.backend_tls_policies.items())
            },
            "snippets_filters": {
                str(k): v.as_dict() for k, v in sorted(self.snippets_filters.items())
            },
        }


def _mark_referenced_snippets_filters(
    state: ClusterState, filters: Dict[NamespacedName, SnippetsFilter], logger: logging.Logger
) -> None:
    # HTTPRoutes and GRPCRoutes carry SnippetsFilters as ExtensionRef filters
    # in their rules.
    for route in itertools.chain(state.http_routes.values(), state.grpc_routes.values()):
        resolve = snippets_filter_resolver(filters, route.namespace)

        for rule in route.spec.get("rules") or []:
            for route_filter in rule.get("filters") or []:
                if route_filter.get("type") != "ExtensionRef":
                    continue

                sf = resolve(route_filter.get("extensionRef") or {})

                if sf is not None and not sf.valid:
                    logger.debug(f"{route.kind} {route.key} uses invalid SnippetsFilter {sf.source.key}")


def build_graph(
    state: ClusterState,
    controller_name: Optional[str] = None,
    gateway_class_name: Optional[str] = None,
    protected_ports: Optional[Mapping[int, str]] = None,
    logger: Optional[logging.Logger] = None,
    timer: Optional[Timer] = None,
) -> Graph:
    """
    Build the Graph for a ClusterState. This never raises for anything wrong
    with the objects in the snapshot: problems become conditions on the
    objects that have them.
    """

    if controller_name is None:
        controller_name = Config.controller_name

    if gateway_class_name is None:
        gateway_class_name = Config.gateway_class_name

    if protected_ports is None:
        protected_ports = Config.protected_ports()

    logger = logger or logging.getLogger("gatewaygraph.graph")

    if timer is None:
        timer = Timer("graph build")

    with timer:
        secret_resolver = SecretResolver(state.secrets, logger=logger)
        config_map_resolver = ConfigMapResolver(state.config_maps, logger=logger)
        ref_grant_resolver = ReferenceGrantResolver(state.reference_grants)

        winner, ignored = process_gateways(state.gateways, gateway_class_name)

        if winner is None:
            logger.debug(f"no Gateway with class {gateway_class_name}")

        for nsname in sorted(ignored):
            logger.debug(f"ignoring Gateway {nsname}: {winner.key} wins")

        gateway = build_gateway(winner, secret_resolver, ref_grant_resolver, protected_ports)

        backend_tls_policies = process_backend_tls_policies(
            state.backend_tls_policies, config_map_resolver, controller_name, gateway
        )

        snippets_filters = process_snippets_filters(state.snippets_filters)
        _mark_referenced_snippets_filters(state, snippets_filters, logger)

        graph = Graph(
            gateway=gateway,
            ignored_gateways=ignored,
            referenced_secrets=secret_resolver.get_resolved(),
            referenced_ca_cert_configmaps=config_map_resolver.get_resolved(),
            backend_tls_policies=backend_tls_policies,
            snippets_filters=snippets_filters,
        )

    logger.info(
        "built graph: gateway %s, %d listeners, %d BackendTLSPolicies, %d SnippetsFilters in %.6f sec"
        % (
            gateway.source.key if gateway else None,
            len(gateway.listeners) if gateway else 0,
            len(backend_tls_policies),
            len(snippets_filters),
            timer.elapsed,
        )
    )

    return graph
