# Copyright 2018 Datawire. All rights reserved.
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

import os
from typing import ClassVar, Dict

from .utils import parse_bool, parse_int

#############################################################################
## config.py -- process-wide settings for gatewaygraph
##
## Everything here is read from the environment once, at import time. Tests
## that need different values should monkeypatch the class variables rather
## than the environment.


class Config:
    # The controller name we write into policy ancestor status. Ancestor entries
    # carrying this name are ours.
    controller_name: ClassVar[str] = os.environ.get(
        "GATEWAYGRAPH_CONTROLLER_NAME", "gateway.nginx.org/nginx-gateway-controller"
    )

    # Gateways whose gatewayClassName matches this are the ones we process.
    gateway_class_name: ClassVar[str] = os.environ.get("GATEWAYGRAPH_GATEWAY_CLASS", "nginx")

    # Namespace to use for objects in a snapshot that don't say.
    default_namespace: ClassVar[str] = os.environ.get("GATEWAYGRAPH_NAMESPACE", "default")

    # Gateway API caps the number of ancestor statuses on a policy at 16. If a
    # policy is full and we're not already in it, we leave it alone.
    max_policy_ancestors: ClassVar[int] = parse_int(
        os.environ.get("GATEWAYGRAPH_MAX_POLICY_ANCESTORS"), 16
    )

    metrics_port: ClassVar[int] = parse_int(os.environ.get("GATEWAYGRAPH_METRICS_PORT"), 9113)
    health_port: ClassVar[int] = parse_int(os.environ.get("GATEWAYGRAPH_HEALTH_PORT"), 8081)

    # Log every resource as it's added to a snapshot. Noisy.
    log_resources: ClassVar[bool] = parse_bool(os.environ.get("GATEWAYGRAPH_LOG_RESOURCES"))

    @classmethod
    def protected_ports(cls) -> Dict[int, str]:
        """
        Ports that listeners may not use, mapped to what they're used for.
        """
        return {
            cls.metrics_port: "MetricsPort",
            cls.health_port: "HealthPort",
        }
