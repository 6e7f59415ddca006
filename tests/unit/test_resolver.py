import logging
from unittest.mock import patch

import pytest

from gatewaygraph.errors import CertificateError, MalformedError, NotFoundError
from gatewaygraph.fetch import NamespacedName
from gatewaygraph.graph import resolver as resolver_module
from gatewaygraph.graph.certificates import validate_ca, validate_tls
from gatewaygraph.graph.resolver import (
    CACertConfigMap,
    ConfigMapResolver,
    Secret,
    SecretResolver,
)
from tests.utils import b64, ca_config_map, ca_pem, private_key_block, tls_pair, tls_secret

logger = logging.getLogger("gatewaygraph")


def secrets(*objs):
    return {o.key: o for o in objs}


########
# Secrets


def test_secret_resolver_valid():
    secret = tls_secret()
    r = SecretResolver(secrets(secret), logger=logger)

    assert r.resolve(secret.key) is None

    resolved = r.get_resolved()[secret.key]
    assert isinstance(resolved, Secret)
    assert resolved.source is secret
    assert resolved.cert_bundle is not None
    assert resolved.cert_bundle.name == secret.key
    assert resolved.cert_bundle.kind == "Secret"
    assert resolved.cert_bundle.cert.tls_cert == tls_pair()[0]
    assert resolved.cert_bundle.cert.tls_private_key == tls_pair()[1]
    assert resolved.cert_bundle.cert.ca_cert is None


def test_secret_resolver_valid_with_ca():
    secret = tls_secret(ca=ca_pem())
    r = SecretResolver(secrets(secret))

    assert r.resolve(secret.key) is None
    assert r.get_resolved()[secret.key].cert_bundle.cert.ca_cert == ca_pem()


def test_secret_resolver_plain_pem_data():
    cert, key = tls_pair()
    secret = tls_secret()
    secret["data"]["tls.crt"] = cert.decode("utf-8")
    secret["data"]["tls.key"] = key.decode("utf-8")

    r = SecretResolver(secrets(secret))

    assert r.resolve(secret.key) is None


def test_secret_resolver_missing():
    r = SecretResolver({})
    nsname = NamespacedName("test", "nope")

    err = r.resolve(nsname)

    assert isinstance(err, NotFoundError)
    assert str(err) == "secret does not exist"

    # Missing objects are still recorded.
    resolved = r.get_resolved()[nsname]
    assert resolved.source is None
    assert resolved.cert_bundle is None


def test_secret_resolver_wrong_type():
    secret = tls_secret(secret_type="Opaque")
    r = SecretResolver(secrets(secret))

    err = r.resolve(secret.key)

    assert isinstance(err, MalformedError)
    assert str(err) == 'secret type must be "kubernetes.io/tls" not "Opaque"'

    resolved = r.get_resolved()[secret.key]
    assert resolved.source is secret
    assert resolved.cert_bundle is None


def test_secret_resolver_bad_key_pair():
    cert, _ = tls_pair("a.example.com")
    _, key = tls_pair("b.example.com")
    secret = tls_secret(cert=cert, key=key)
    r = SecretResolver(secrets(secret))

    err = r.resolve(secret.key)

    assert isinstance(err, CertificateError)
    assert str(err) == "private key does not match public key"
    assert r.get_resolved()[secret.key].cert_bundle is None


def test_secret_resolver_bad_ca_after_good_pair():
    secret = tls_secret(ca=private_key_block())
    r = SecretResolver(secrets(secret))

    err = r.resolve(secret.key)

    assert isinstance(err, CertificateError)
    assert "but got 'PRIVATE KEY'" in str(err)
    assert r.get_resolved()[secret.key].cert_bundle is None


def test_secret_resolver_bad_pair_wins_over_bad_ca():
    cert, _ = tls_pair("a.example.com")
    _, key = tls_pair("b.example.com")
    secret = tls_secret(cert=cert, key=key, ca=b"garbage")
    r = SecretResolver(secrets(secret))

    err = r.resolve(secret.key)

    assert str(err) == "private key does not match public key"


def test_secret_resolver_memoizes():
    good = tls_secret(name="good")
    bad = tls_secret(name="bad", secret_type="Opaque")
    r = SecretResolver(secrets(good, bad))

    with patch.object(resolver_module, "validate_tls", wraps=validate_tls) as counter:
        assert r.resolve(good.key) is None
        assert r.resolve(good.key) is None
        assert r.resolve(good.key) is None

        assert counter.call_count == 1

        err1 = r.resolve(bad.key)
        err2 = r.resolve(bad.key)

        assert err1 is err2
        assert counter.call_count == 1


########
# ConfigMaps


def test_config_map_resolver_data():
    cm = ca_config_map(data={"ca.crt": ca_pem().decode("utf-8")})
    r = ConfigMapResolver({cm.key: cm}, logger=logger)

    assert r.resolve(cm.key) is None

    resolved = r.get_resolved()[cm.key]
    assert isinstance(resolved, CACertConfigMap)
    assert resolved.source is cm
    assert resolved.ca_cert == ca_pem()
    assert resolved.cert_bundle is not None
    assert resolved.cert_bundle.kind == "ConfigMap"
    assert resolved.cert_bundle.cert.ca_cert == ca_pem()


def test_config_map_resolver_binary_data():
    cm = ca_config_map(binary_data={"ca.crt": b64(ca_pem())})
    r = ConfigMapResolver({cm.key: cm})

    assert r.resolve(cm.key) is None
    assert r.get_resolved()[cm.key].ca_cert == ca_pem()


def test_config_map_resolver_binary_data_wins():
    cm = ca_config_map(data={"ca.crt": "invalid"}, binary_data={"ca.crt": b64(ca_pem())})
    r = ConfigMapResolver({cm.key: cm})

    assert r.resolve(cm.key) is None


def test_config_map_resolver_missing():
    r = ConfigMapResolver({})
    nsname = NamespacedName("test", "nope")

    err = r.resolve(nsname)

    assert isinstance(err, NotFoundError)
    assert str(err) == "ConfigMap does not exist"
    assert r.get_resolved()[nsname].source is None


@pytest.mark.parametrize(
    "data,binary_data",
    [
        (None, None),
        ({"other": "stuff"}, None),
        ({"ca.crt": ""}, None),
        (None, {"other": "c3R1ZmY="}),
    ],
)
def test_config_map_resolver_no_ca(data, binary_data):
    cm = ca_config_map(data=data, binary_data=binary_data)
    r = ConfigMapResolver({cm.key: cm})

    err = r.resolve(cm.key)

    assert isinstance(err, MalformedError)
    assert str(err) == "ConfigMap does not have the data or binaryData field ca.crt"

    resolved = r.get_resolved()[cm.key]
    assert resolved.source is cm
    assert resolved.cert_bundle is None


def test_config_map_resolver_invalid_ca():
    cm = ca_config_map(data={"ca.crt": "invalid"})
    r = ConfigMapResolver({cm.key: cm})

    err = r.resolve(cm.key)

    assert isinstance(err, CertificateError)
    assert str(err) == "the data field ca.crt must hold a valid CERTIFICATE PEM block"
    assert r.get_resolved()[cm.key].cert_bundle is None


def test_config_map_resolver_memoizes():
    cm = ca_config_map(data={"ca.crt": ca_pem().decode("utf-8")})
    r = ConfigMapResolver({cm.key: cm})

    with patch.object(resolver_module, "validate_ca", wraps=validate_ca) as counter:
        for _ in range(5):
            assert r.resolve(cm.key) is None

        assert counter.call_count == 1


def test_resolvers_have_separate_caches():
    secret = tls_secret(name="shared")
    cm = ca_config_map(name="shared", data={"ca.crt": ca_pem().decode("utf-8")})

    secret_resolver = SecretResolver({secret.key: secret})
    config_map_resolver = ConfigMapResolver({cm.key: cm})

    assert secret_resolver.resolve(secret.key) is None
    assert len(config_map_resolver) == 0
    assert NamespacedName("test", "shared") not in config_map_resolver.get_resolved()


########
# get_resolved


def test_get_resolved_empty():
    r = SecretResolver({})

    assert len(r.get_resolved()) == 0


def test_get_resolved_is_read_only_snapshot():
    secret = tls_secret()
    other = tls_secret(name="other")
    r = SecretResolver(secrets(secret, other))

    r.resolve(secret.key)
    snapshot = r.get_resolved()

    with pytest.raises(TypeError):
        snapshot[other.key] = Secret(source=None)  # type: ignore

    # Resolving more doesn't change a snapshot we already have...
    r.resolve(other.key)
    assert other.key not in snapshot

    # ...but a new one sees it.
    assert other.key in r.get_resolved()
