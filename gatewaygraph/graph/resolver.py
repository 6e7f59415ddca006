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
import types
from typing import Any, ClassVar, Dict, Generic, Mapping, Optional, Tuple, TypeVar, Union

from ..errors import GraphError, MalformedError, NotFoundError
from ..fetch.k8sobject import KubernetesObject, NamespacedName
from ..utils import decode_b64, is_decodable
from .certificates import (
    CA_KEY,
    TLS_CERT_KEY,
    TLS_KEY_KEY,
    Certificate,
    CertificateBundle,
    new_certificate_bundle,
    validate_ca,
    validate_tls,
)

SECRET_TYPE_TLS = "kubernetes.io/tls"

R = TypeVar("R")


@dataclasses.dataclass(frozen=True)
class Secret:
    """
    A Secret that something in the graph refers to. source is None if the
    Secret doesn't exist; cert_bundle is None unless the Secret validated.
    """

    source: Optional[KubernetesObject]
    cert_bundle: Optional[CertificateBundle] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "exists": self.source is not None,
            "cert_bundle": self.cert_bundle.as_dict() if self.cert_bundle else None,
        }


@dataclasses.dataclass(frozen=True)
class CACertConfigMap:
    """
    A ConfigMap that something in the graph uses as a CA certificate source.
    """

    source: Optional[KubernetesObject]
    ca_cert: Optional[bytes] = None
    cert_bundle: Optional[CertificateBundle] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "exists": self.source is not None,
            "cert_bundle": self.cert_bundle.as_dict() if self.cert_bundle else None,
        }


class ReferenceResolver(Generic[R]):
    """
    ReferenceResolver turns references to objects of one kind into validated,
    resolved objects, remembering the outcome so that any given object is
    validated at most once per graph build.

    Subclasses supply the per-kind parts:

    - extract(obj) pulls the certificate material out of a source object,
      raising MalformedError if the object has the wrong type or shape;
    - validate(cert) checks that material, raising CertificateError;
    - build(source, cert, bundle) creates the resolved object.
    """

    kind: ClassVar[str] = ""
    not_found_message: ClassVar[str] = "object does not exist"

    logger: logging.Logger
    objects: Mapping[NamespacedName, KubernetesObject]
    _resolved: Dict[NamespacedName, Tuple[R, Optional[GraphError]]]

    def __init__(
        self,
        objects: Mapping[NamespacedName, KubernetesObject],
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.objects = objects
        self.logger = logger or logging.getLogger("gatewaygraph.resolver")
        self._resolved = {}

    def extract(self, obj: KubernetesObject) -> Certificate:
        raise NotImplementedError(f"{self.__class__.__name__}.extract")

    def validate(self, cert: Certificate) -> None:
        raise NotImplementedError(f"{self.__class__.__name__}.validate")

    def build(
        self,
        source: Optional[KubernetesObject],
        cert: Optional[Certificate],
        bundle: Optional[CertificateBundle],
    ) -> R:
        raise NotImplementedError(f"{self.__class__.__name__}.build")

    def resolve(self, nsname: NamespacedName) -> Optional[GraphError]:
        """
        Resolve the object named by nsname. Returns None on success, or the
        error that made it unusable. Either way, the outcome is cached and
        later calls for the same nsname return it without revalidating.
        """

        if nsname in self._resolved:
            error = self._resolved[nsname][1]
            self.logger.debug(f"{self.kind} {nsname}: cached, error {error}")
            return error

        source = self.objects.get(nsname)
        cert: Optional[Certificate] = None
        bundle: Optional[CertificateBundle] = None
        error = None

        try:
            if source is None:
                raise NotFoundError(self.not_found_message)

            cert = self.extract(source)
            self.validate(cert)
            bundle = new_certificate_bundle(nsname, self.kind, cert)
        except GraphError as e:
            error = e

        self._resolved[nsname] = (self.build(source, cert, bundle), error)

        if error:
            self.logger.debug(f"{self.kind} {nsname}: invalid: {error}")
        else:
            self.logger.debug(f"{self.kind} {nsname}: resolved")

        return error

    def get_resolved(self) -> Mapping[NamespacedName, R]:
        """
        Return a read-only snapshot of everything resolved so far, valid or
        not. Later calls to resolve() don't show up in it.
        """
        return types.MappingProxyType(
            {nsname: entry[0] for nsname, entry in self._resolved.items()}
        )

    def __len__(self) -> int:
        return len(self._resolved)


def _secret_bytes(value: Optional[Union[str, bytes]]) -> bytes:
    # Secret data and ConfigMap binaryData are base64 in manifests, but we
    # also accept PEM as-is.
    if not value:
        return b""

    if is_decodable(value):
        decoded = decode_b64(value)

        if decoded is not None:
            return decoded

    return value.encode("utf-8") if isinstance(value, str) else value


class SecretResolver(ReferenceResolver[Secret]):
    kind = "Secret"
    not_found_message = "secret does not exist"

    def extract(self, obj: KubernetesObject) -> Certificate:
        secret_type = obj.get("type") or "Opaque"

        if secret_type != SECRET_TYPE_TLS:
            raise MalformedError(f'secret type must be "{SECRET_TYPE_TLS}" not "{secret_type}"')

        data = obj.get("data") or {}

        return Certificate(
            tls_cert=_secret_bytes(data.get(TLS_CERT_KEY)),
            tls_private_key=_secret_bytes(data.get(TLS_KEY_KEY)),
            ca_cert=_secret_bytes(data[CA_KEY]) if CA_KEY in data else None,
        )

    def validate(self, cert: Certificate) -> None:
        validate_tls(cert.tls_cert or b"", cert.tls_private_key or b"")

        if cert.ca_cert:
            validate_ca(cert.ca_cert)

    def build(
        self,
        source: Optional[KubernetesObject],
        cert: Optional[Certificate],
        bundle: Optional[CertificateBundle],
    ) -> Secret:
        return Secret(source=source, cert_bundle=bundle)


class ConfigMapResolver(ReferenceResolver[CACertConfigMap]):
    kind = "ConfigMap"
    not_found_message = "ConfigMap does not exist"

    def extract(self, obj: KubernetesObject) -> Certificate:
        binary_data = (obj.get("binaryData") or {}).get(CA_KEY)
        data = (obj.get("data") or {}).get(CA_KEY)

        ca_cert = b""

        # binaryData wins if both are present.
        if binary_data:
            ca_cert = _secret_bytes(binary_data)
        elif data:
            ca_cert = data.encode("utf-8")

        if not ca_cert:
            raise MalformedError(f"ConfigMap does not have the data or binaryData field {CA_KEY}")

        return Certificate(ca_cert=ca_cert)

    def validate(self, cert: Certificate) -> None:
        validate_ca(cert.ca_cert or b"")

    def build(
        self,
        source: Optional[KubernetesObject],
        cert: Optional[Certificate],
        bundle: Optional[CertificateBundle],
    ) -> CACertConfigMap:
        return CACertConfigMap(
            source=source, ca_cert=cert.ca_cert if cert else None, cert_bundle=bundle
        )
