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
import re
from typing import Optional, Tuple

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization

from ..errors import CertificateError, CertificateErrorKind
from ..fetch.k8sobject import NamespacedName
from ..utils import decode_b64

# The key under which both Secrets and ConfigMaps carry CA certificates.
CA_KEY = "ca.crt"

TLS_CERT_KEY = "tls.crt"
TLS_KEY_KEY = "tls.key"

_pem_block = re.compile(
    rb"-----BEGIN (?P<type>[^-\r\n]+)-----\r?\n(?P<body>.*?)-----END (?P=type)-----",
    re.DOTALL,
)


@dataclasses.dataclass(frozen=True)
class Certificate:
    tls_cert: Optional[bytes] = None
    tls_private_key: Optional[bytes] = None
    ca_cert: Optional[bytes] = None


@dataclasses.dataclass(frozen=True)
class CertificateBundle:
    """
    Validated certificate material, along with the identity and kind of the
    object it came from.
    """

    name: NamespacedName
    kind: str
    cert: Certificate

    def as_dict(self) -> dict:
        return {
            "name": str(self.name),
            "kind": self.kind,
            "has_tls_cert": bool(self.cert.tls_cert),
            "has_ca_cert": bool(self.cert.ca_cert),
        }


def new_certificate_bundle(name: NamespacedName, kind: str, cert: Certificate) -> CertificateBundle:
    return CertificateBundle(name=name, kind=kind, cert=cert)


def _public_key_der(key) -> bytes:
    return key.public_bytes(
        serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo
    )


def validate_tls(cert: bytes, key: bytes) -> None:
    """
    Make sure that cert (a PEM chain, leaf first) and key (a PEM private key)
    form a usable key pair. Raises CertificateError if they don't.
    """

    try:
        chain = x509.load_pem_x509_certificates(cert)
    except ValueError as e:
        raise CertificateError(
            CertificateErrorKind.INVALID_KEY_PAIR, f"failed to load certificate: {e}"
        )

    try:
        private_key = serialization.load_pem_private_key(key, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise CertificateError(
            CertificateErrorKind.INVALID_KEY_PAIR, f"failed to load private key: {e}"
        )

    if _public_key_der(chain[0].public_key()) != _public_key_der(private_key.public_key()):
        raise CertificateError(
            CertificateErrorKind.INVALID_KEY_PAIR, "private key does not match public key"
        )


def _first_pem_block(data: bytes) -> Optional[Tuple[str, bytes]]:
    match = _pem_block.search(data)

    if not match:
        return None

    # Skip RFC 1421 headers, if any, before the base64 body.
    body = match.group("body")

    if b":" in body.split(b"\n", 1)[0]:
        _, _, body = body.partition(b"\n\n")

    der = decode_b64(body)

    if der is None:
        return None

    return match.group("type").decode("utf-8", "backslashreplace"), der


def validate_ca(data: bytes) -> None:
    """
    Make sure that data holds a CA certificate. The data may be a PEM
    CERTIFICATE block as-is, or the base64 encoding of one: ConfigMap data
    fields carry the former, binaryData fields often the latter.

    Only the first PEM block is examined. Raises CertificateError if it isn't
    a well-formed X.509 certificate.
    """

    pem = decode_b64(data)

    if pem is None:
        pem = data

    block = _first_pem_block(pem)

    if block is None:
        raise CertificateError(
            CertificateErrorKind.INVALID_CA_CERT,
            f"the data field {CA_KEY} must hold a valid CERTIFICATE PEM block",
        )

    block_type, der = block

    if block_type != "CERTIFICATE":
        raise CertificateError(
            CertificateErrorKind.INVALID_CA_CERT,
            f"the data field {CA_KEY} must hold a valid CERTIFICATE PEM block, but got '{block_type}'",
        )

    try:
        x509.load_der_x509_certificate(der)
    except ValueError as e:
        raise CertificateError(
            CertificateErrorKind.INVALID_CA_CERT, f"failed to validate certificate: {e}"
        )
