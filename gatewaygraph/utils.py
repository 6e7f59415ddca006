#!/usr/bin/env python

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

import binascii
import logging
import os
import re
import socket
import time
from typing import Any, Dict, Optional, Union

import orjson
import yaml
from prometheus_client import Gauge

from .VERSION import Version

logger = logging.getLogger("gatewaygraph.utils")
logger.setLevel(logging.INFO)

# XXX There doesn't seem to be a way to convince mypy that SafeLoader
# and CSafeLoader share a base class, even though they do. Sigh.

yaml_loader: Any = yaml.SafeLoader

try:
    yaml_loader = yaml.CSafeLoader
except AttributeError:
    pass


def parse_yaml(serialization: str) -> Any:
    return list(yaml.load_all(serialization, Loader=yaml_loader))


def parse_json(serialization: Union[str, bytes]) -> Any:
    return orjson.loads(serialization)


def dump_json(obj: Any, pretty=False) -> str:
    if pretty:
        return bytes.decode(
            orjson.dumps(
                obj, option=orjson.OPT_NON_STR_KEYS | orjson.OPT_SORT_KEYS | orjson.OPT_INDENT_2
            )
        )
    else:
        return bytes.decode(orjson.dumps(obj, option=orjson.OPT_NON_STR_KEYS))


_TRUE_STRINGS = {"y", "yes", "t", "true", "on", "1"}
_FALSE_STRINGS = {"n", "no", "f", "false", "off", "0"}


def parse_bool(s: Optional[Union[str, bool]]) -> bool:
    """
    Parse a boolean value from a string. T, True, Y, y, 1 return True;
    other things return False.
    """

    # If `s` is already a bool, return its value.
    if isinstance(s, bool):
        return s

    # If we didn't get anything at all, return False.
    if not s:
        return False

    value = s.strip().lower()

    if value in _TRUE_STRINGS:
        return True

    if value not in _FALSE_STRINGS:
        logger.debug("parse_bool: treating unrecognized value %r as False", s)

    return False


def parse_int(s: Optional[str], default: int) -> int:
    if s is None or s == "":
        return default

    try:
        return int(s)
    except ValueError:
        logger.warning("parse_int: %r is not an integer, using %d", s, default)
        return default


_b64_matcher = re.compile(rb"[A-Za-z0-9+/]*={0,2}")


def is_decodable(b64_data: Optional[Union[str, bytes]]) -> bool:
    """
    A value is worth base64-decoding only if it's non-empty and isn't already
    a PEM element.
    """
    if not b64_data:
        return False

    if isinstance(b64_data, bytes):
        return not b64_data.lstrip().startswith(b"-----BEGIN")

    return not b64_data.lstrip().startswith("-----BEGIN")


def decode_b64(b64_data: Union[str, bytes]) -> Optional[bytes]:
    """
    Do strict base64 decoding of a cryptographic element. Whitespace (including
    the line breaks that PEM-style wrapping adds) is ignored; any other byte
    outside the base64 alphabet makes the whole thing undecodable.

    :param b64_data: base64-encoded element
    :return: decoded bytes, or None if the input isn't valid base64
    """

    if isinstance(b64_data, str):
        try:
            b64_data = b64_data.encode("ascii")
        except UnicodeEncodeError:
            return None

    compact = b"".join(b64_data.split())

    # a2b_base64 quietly skips junk characters, so check the alphabet ourselves.
    if not compact or (len(compact) % 4) or not _b64_matcher.fullmatch(compact):
        return None

    try:
        return binascii.a2b_base64(compact)
    except binascii.Error:
        return None


class SystemInfo:
    MyHostName = os.environ.get("HOSTNAME", None)

    if not MyHostName:
        MyHostName = "localhost"

        try:
            MyHostName = socket.gethostname()
        except OSError:
            pass


class RichStatus:
    """
    The outcome of a check the CLI runs: ok or not, plus the details that go
    with it. The hostname and version are always among the details.
    """

    def __init__(self, ok: bool, **details) -> None:
        self.ok = ok
        self.details = dict(details, hostname=SystemInfo.MyHostName, version=Version)

    def __bool__(self) -> bool:
        return self.ok

    def as_dict(self) -> Dict[str, Any]:
        return {"ok": self.ok, **self.details}

    @classmethod
    def fromError(cls, error: str, **details) -> "RichStatus":
        return cls(False, error=error, **details)

    @classmethod
    def OK(cls, **details) -> "RichStatus":
        return cls(True, **details)


class Timer:
    """
    Timer measures how long a graph build takes:

    timer = Timer("graph build")

    with timer:
        build_the_graph()

    timer.elapsed is then the duration of that build in seconds, and
    timer.builds counts the builds timed so far. If a prometheus registry is
    given, every build also sets a <name>_time_seconds Gauge there.
    """

    name: str
    builds: int
    elapsed: float
    _starttime: Optional[float]
    _gauge: Optional[Gauge] = None

    def __init__(self, name: str, prom_metrics_registry: Optional[Any] = None) -> None:
        self.name = name
        self.builds = 0
        self.elapsed = 0.0
        self._starttime = None

        if prom_metrics_registry is not None:
            metric_prefix = re.sub(r"\s+", "_", name).lower()
            self._gauge = Gauge(
                f"{metric_prefix}_time_seconds",
                f"Elapsed time on the most recent {name}",
                namespace="gatewaygraph",
                registry=prom_metrics_registry,
            )

    def __enter__(self) -> "Timer":
        self._starttime = time.perf_counter()
        return self

    def __exit__(self, type, value, traceback) -> None:
        self.elapsed = time.perf_counter() - self._starttime
        self._starttime = None
        self.builds += 1

        if self._gauge is not None:
            self._gauge.set(self.elapsed)
