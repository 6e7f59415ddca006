#!python
# Copyright 2019-2020 Datawire. All rights reserved.
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
# gatewaygraph is a debugging tool: it reads a snapshot of cluster objects
# (YAML manifests, or a JSON snapshot), builds the graph for it, and prints
# the graph, with every condition we'd report, as JSON.
########

import functools
import logging
import sys
from typing import Dict, Tuple

import click
import yaml
from prometheus_client import CollectorRegistry, generate_latest

from gatewaygraph import Config, Version
from gatewaygraph.errors import CertificateError
from gatewaygraph.fetch import ClusterState
from gatewaygraph.graph import build_graph
from gatewaygraph.graph.certificates import validate_ca
from gatewaygraph.utils import RichStatus, Timer, dump_json

# Use this instead of click.option
click_option = functools.partial(click.option, show_default=True)

logger = logging.getLogger("gatewaygraph")


def setup_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s gatewaygraph %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    logger.setLevel(logging.DEBUG if debug else logging.INFO)


def parse_protected_ports(values: Tuple[str, ...]) -> Dict[int, str]:
    ports: Dict[int, str] = {}

    for value in values:
        port, sep, name = value.partition("=")

        if not sep or not name:
            raise click.BadParameter(f"{value}: must be PORT=NAME", param_hint="--protected-port")

        try:
            ports[int(port)] = name
        except ValueError:
            raise click.BadParameter(f"{value}: {port} is not a port", param_hint="--protected-port")

    return ports


@click.group(help="Build and check Gateway API resource graphs")
@click.version_option(Version, prog_name="gatewaygraph")
def main() -> None:
    pass


@main.command(help="Build the graph for a snapshot and print it as JSON")
@click.argument("snapshot", type=click.Path(dir_okay=False))
@click_option("--controller-name", default=Config.controller_name, help="controller name for policy ancestors")
@click_option("--gateway-class", default=Config.gateway_class_name, help="GatewayClass to process")
@click_option(
    "--protected-port",
    "protected_ports",
    multiple=True,
    help="PORT=NAME for a port listeners may not use (default: the metrics and health ports)",
)
@click_option("--debug/--no-debug", default=False, help="enable debug logging")
@click_option("--pretty/--compact", default=True, help="pretty-print the JSON")
@click_option("--metrics/--no-metrics", default=False, help="print build timing metrics to stderr")
def build(
    snapshot: str,
    controller_name: str,
    gateway_class: str,
    protected_ports: Tuple[str, ...],
    debug: bool,
    pretty: bool,
    metrics: bool,
) -> None:
    setup_logging(debug)

    ports = parse_protected_ports(protected_ports) if protected_ports else Config.protected_ports()

    try:
        state = ClusterState.from_file(snapshot, logger=logger)
    except (OSError, ValueError, yaml.YAMLError) as e:
        click.echo(f"could not read {snapshot}: {e}", err=True)
        sys.exit(1)

    logger.debug(f"snapshot {snapshot}: {state.counts()}")

    registry = CollectorRegistry() if metrics else None
    timer = Timer("graph build", registry)

    graph = build_graph(
        state,
        controller_name=controller_name,
        gateway_class_name=gateway_class,
        protected_ports=ports,
        logger=logger,
        timer=timer,
    )

    click.echo(dump_json(graph.as_dict(), pretty=pretty))

    if registry is not None:
        click.echo(generate_latest(registry).decode("utf-8"), err=True, nl=False)


@main.command(name="check-ca", help="Check that a file holds a usable CA certificate")
@click.argument("path", type=click.Path(dir_okay=False))
def check_ca(path: str) -> None:
    try:
        with open(path, "rb") as f:
            validate_ca(f.read())

        status = RichStatus.OK(file=path)
    except OSError as e:
        status = RichStatus.fromError(f"could not read {path}: {e}", file=path)
    except CertificateError as e:
        status = RichStatus.fromError(str(e), file=path, kind=e.kind.value)

    click.echo(dump_json(status.as_dict()))

    if not status:
        sys.exit(1)


if __name__ == "__main__":
    main()
