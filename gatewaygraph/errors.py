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

import enum


class GraphError(Exception):
    """
    Base class for everything that can go wrong while resolving or validating
    a resource. None of these ever escape a graph build: they're turned into
    Conditions on the resource that caused them.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class NotFoundError(GraphError):
    """A referenced object is not in the snapshot."""


class MalformedError(GraphError):
    """An object exists but has the wrong type or shape."""


@enum.unique
class CertificateErrorKind(enum.Enum):
    INVALID_KEY_PAIR = "InvalidKeyPair"
    INVALID_CA_CERT = "InvalidCACert"


class CertificateError(GraphError):
    """Certificate material that won't parse, or a cert and key that don't match."""

    def __init__(self, kind: CertificateErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind


class CapacityError(GraphError):
    """A policy has no room left for another ancestor status."""
