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
from typing import Dict, List

# Condition types
ACCEPTED = "Accepted"
PROGRAMMED = "Programmed"
RESOLVED_REFS = "ResolvedRefs"
CONFLICTED = "Conflicted"

STATUS_TRUE = "True"
STATUS_FALSE = "False"

# Reasons
REASON_INVALID = "Invalid"
REASON_UNSUPPORTED_VALUE = "UnsupportedValue"
REASON_UNSUPPORTED_PROTOCOL = "UnsupportedProtocol"
REASON_INVALID_CERTIFICATE_REF = "InvalidCertificateRef"
REASON_INVALID_ROUTE_KINDS = "InvalidRouteKinds"
REASON_PROTOCOL_CONFLICT = "ProtocolConflict"
REASON_HOSTNAME_CONFLICT = "HostnameConflict"
REASON_REF_NOT_PERMITTED = "RefNotPermitted"


@dataclasses.dataclass(frozen=True)
class Condition:
    """
    A status fact about a resource, in the shape Kubernetes status conditions
    take. Everything this package produces is a rejection.
    """

    type: str
    status: str
    reason: str
    message: str

    def as_dict(self) -> Dict[str, str]:
        return dataclasses.asdict(self)


########
# Listeners


def listener_not_programmed_invalid(msg: str) -> Condition:
    return Condition(PROGRAMMED, STATUS_FALSE, REASON_INVALID, msg)


def listener_unsupported_value(msg: str) -> List[Condition]:
    return [
        Condition(ACCEPTED, STATUS_FALSE, REASON_UNSUPPORTED_VALUE, msg),
        listener_not_programmed_invalid(msg),
    ]


def listener_invalid_certificate_ref(msg: str) -> List[Condition]:
    return [
        Condition(ACCEPTED, STATUS_FALSE, REASON_INVALID_CERTIFICATE_REF, msg),
        Condition(RESOLVED_REFS, STATUS_FALSE, REASON_INVALID_CERTIFICATE_REF, msg),
        listener_not_programmed_invalid(msg),
    ]


def listener_invalid_route_kinds(msg: str) -> List[Condition]:
    return [
        Condition(RESOLVED_REFS, STATUS_FALSE, REASON_INVALID_ROUTE_KINDS, msg),
        listener_not_programmed_invalid(msg),
    ]


def listener_protocol_conflict(msg: str) -> List[Condition]:
    return [
        Condition(ACCEPTED, STATUS_FALSE, REASON_PROTOCOL_CONFLICT, msg),
        Condition(CONFLICTED, STATUS_TRUE, REASON_PROTOCOL_CONFLICT, msg),
        listener_not_programmed_invalid(msg),
    ]


def listener_hostname_conflict(msg: str) -> List[Condition]:
    return [
        Condition(ACCEPTED, STATUS_FALSE, REASON_HOSTNAME_CONFLICT, msg),
        Condition(CONFLICTED, STATUS_TRUE, REASON_HOSTNAME_CONFLICT, msg),
        listener_not_programmed_invalid(msg),
    ]


def listener_unsupported_protocol(msg: str) -> List[Condition]:
    return [
        Condition(ACCEPTED, STATUS_FALSE, REASON_UNSUPPORTED_PROTOCOL, msg),
        listener_not_programmed_invalid(msg),
    ]


def listener_ref_not_permitted(msg: str) -> List[Condition]:
    return [
        Condition(ACCEPTED, STATUS_FALSE, REASON_REF_NOT_PERMITTED, msg),
        Condition(RESOLVED_REFS, STATUS_FALSE, REASON_REF_NOT_PERMITTED, msg),
        listener_not_programmed_invalid(msg),
    ]


########
# Gateways


def gateway_unsupported_value(msg: str) -> List[Condition]:
    return [
        Condition(ACCEPTED, STATUS_FALSE, REASON_UNSUPPORTED_VALUE, msg),
        Condition(PROGRAMMED, STATUS_FALSE, REASON_UNSUPPORTED_VALUE, msg),
    ]


########
# Policies and filters


def policy_invalid(msg: str) -> Condition:
    return Condition(ACCEPTED, STATUS_FALSE, REASON_INVALID, msg)


def backend_tls_policy_invalid(msg: str) -> Condition:
    return policy_invalid(msg)


def snippets_filter_invalid(msg: str) -> Condition:
    return Condition(ACCEPTED, STATUS_FALSE, REASON_INVALID, msg)
