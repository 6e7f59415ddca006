import datetime
import functools
import logging
from base64 import b64encode
from typing import Any, Dict, List, Optional, Tuple

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from gatewaygraph.fetch import ClusterState, KubernetesObject

logger = logging.getLogger("gatewaygraph")

CONTROLLER_NAME = "gateway.nginx.org/nginx-gateway-controller"


def _key_pem(key: ec.EllipticCurvePrivateKey) -> bytes:
    return key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )


def _cert(
    key: ec.EllipticCurvePrivateKey,
    common_name: str,
    is_ca: bool,
    issuer: Optional[Tuple[x509.Certificate, ec.EllipticCurvePrivateKey]] = None,
) -> x509.Certificate:
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    issuer_name = issuer[0].subject if issuer else subject
    signing_key = issuer[1] if issuer else key
    now = datetime.datetime.now(datetime.timezone.utc)

    return (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer_name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=30))
        .add_extension(x509.BasicConstraints(ca=is_ca, path_length=None), critical=True)
        .sign(signing_key, hashes.SHA256())
    )


@functools.lru_cache(maxsize=None)
def ca_pair() -> Tuple[bytes, bytes]:
    """A self-signed CA certificate and its key, both PEM."""
    key = ec.generate_private_key(ec.SECP256R1())
    cert = _cert(key, "test-ca", is_ca=True)

    return cert.public_bytes(serialization.Encoding.PEM), _key_pem(key)


@functools.lru_cache(maxsize=None)
def tls_pair(common_name: str = "example.com") -> Tuple[bytes, bytes]:
    """A leaf certificate (signed by ca_pair()) and its key, both PEM."""
    ca_cert_pem, ca_key_pem = ca_pair()
    ca_cert = x509.load_pem_x509_certificate(ca_cert_pem)
    ca_key = serialization.load_pem_private_key(ca_key_pem, password=None)

    key = ec.generate_private_key(ec.SECP256R1())
    cert = _cert(key, common_name, is_ca=False, issuer=(ca_cert, ca_key))

    return cert.public_bytes(serialization.Encoding.PEM), _key_pem(key)


def ca_pem() -> bytes:
    return ca_pair()[0]


def b64(data: bytes) -> str:
    return b64encode(data).decode("utf-8")


def private_key_block() -> bytes:
    """A well-formed PEM block that isn't a CERTIFICATE."""
    return tls_pair()[1]


########
# Object builders


def obj(api_version: str, kind: str, name: str, namespace: str = "test", **rest: Any) -> KubernetesObject:
    return KubernetesObject(
        {
            "apiVersion": api_version,
            "kind": kind,
            "metadata": {"name": name, "namespace": namespace},
            **rest,
        }
    )


def tls_secret(
    name: str = "secret",
    namespace: str = "test",
    cert: Optional[bytes] = None,
    key: Optional[bytes] = None,
    ca: Optional[bytes] = None,
    secret_type: str = "kubernetes.io/tls",
) -> KubernetesObject:
    if cert is None or key is None:
        cert, key = tls_pair()

    data = {"tls.crt": b64(cert), "tls.key": b64(key)}

    if ca is not None:
        data["ca.crt"] = b64(ca)

    return obj("v1", "Secret", name, namespace, type=secret_type, data=data)


def ca_config_map(
    name: str = "configmap",
    namespace: str = "test",
    data: Optional[Dict[str, str]] = None,
    binary_data: Optional[Dict[str, str]] = None,
) -> KubernetesObject:
    rest: Dict[str, Any] = {}

    if data is not None:
        rest["data"] = data

    if binary_data is not None:
        rest["binaryData"] = binary_data

    return obj("v1", "ConfigMap", name, namespace, **rest)


def gateway(
    name: str = "gateway",
    namespace: str = "test",
    listeners: Optional[List[Dict[str, Any]]] = None,
    gateway_class: str = "nginx",
    created: str = "2024-01-01T00:00:00Z",
    **spec: Any,
) -> KubernetesObject:
    gw = obj(
        "gateway.networking.k8s.io/v1",
        "Gateway",
        name,
        namespace,
        spec={"gatewayClassName": gateway_class, "listeners": listeners or [], **spec},
    )
    gw.metadata["creationTimestamp"] = created

    return gw


def backend_tls_policy(
    name: str = "tls-policy",
    namespace: str = "test",
    validation: Optional[Dict[str, Any]] = None,
    ancestors: Optional[List[Dict[str, Any]]] = None,
) -> KubernetesObject:
    rest: Dict[str, Any] = {
        "spec": {
            "targetRefs": [{"group": "", "kind": "Service", "name": "service1"}],
            "validation": validation or {},
        }
    }

    if ancestors is not None:
        rest["status"] = {"ancestors": ancestors}

    return obj("gateway.networking.k8s.io/v1alpha3", "BackendTLSPolicy", name, namespace, **rest)


def ancestor(controller_name: str, gateway_name: str, namespace: str = "test") -> Dict[str, Any]:
    return {
        "controllerName": controller_name,
        "ancestorRef": {
            "group": "gateway.networking.k8s.io",
            "kind": "Gateway",
            "name": gateway_name,
            "namespace": namespace,
        },
    }


def snippets_filter(
    name: str = "sf", namespace: str = "test", snippets: Optional[List[Dict[str, str]]] = None
) -> KubernetesObject:
    return obj(
        "gateway.nginx.org/v1alpha1",
        "SnippetsFilter",
        name,
        namespace,
        spec={"snippets": snippets or []},
    )


def state_of(*objects: KubernetesObject) -> ClusterState:
    state = ClusterState()

    for o in objects:
        state.add(o)

    return state
