import time

import pytest
from prometheus_client import CollectorRegistry

from gatewaygraph import Version
from gatewaygraph.utils import (
    RichStatus,
    SystemInfo,
    Timer,
    decode_b64,
    dump_json,
    is_decodable,
    parse_bool,
    parse_int,
    parse_json,
    parse_yaml,
)


@pytest.mark.parametrize(
    "value,expected",
    [
        (None, False),
        ("", False),
        (True, True),
        (False, False),
        ("true", True),
        (" Yes ", True),
        ("1", True),
        ("0", False),
        ("off", False),
        ("maybe", False),
    ],
)
def test_parse_bool(value, expected):
    assert parse_bool(value) == expected


def test_parse_int():
    assert parse_int(None, 16) == 16
    assert parse_int("", 16) == 16
    assert parse_int("4", 16) == 4
    assert parse_int("four", 16) == 16


def test_decode_b64():
    assert decode_b64("aGVsbG8=") == b"hello"
    assert decode_b64(b"aGVs\nbG8=\n") == b"hello"
    assert decode_b64("aGVsbG8") is None
    assert decode_b64("aGVs!G8=") is None
    assert decode_b64("") is None
    assert decode_b64("héllo===") is None


def test_is_decodable():
    assert is_decodable("aGVsbG8=")
    assert is_decodable(b"aGVsbG8=")
    assert not is_decodable("")
    assert not is_decodable(None)
    assert not is_decodable("-----BEGIN CERTIFICATE-----\n")
    assert not is_decodable(b"\n-----BEGIN CERTIFICATE-----\n")


def test_yaml_and_json():
    assert parse_yaml("a: 1\n---\nb: 2\n") == [{"a": 1}, {"b": 2}]
    assert parse_json('{"a": [1, 2]}') == {"a": [1, 2]}
    assert dump_json({"b": 1, "a": None}) == '{"b":1,"a":null}'
    assert dump_json({"b": 1, "a": 2}, pretty=True) == '{\n  "a": 2,\n  "b": 1\n}'


def test_rich_status():
    ok = RichStatus.OK(file="ca.crt")

    assert ok
    assert ok.as_dict() == {
        "ok": True,
        "file": "ca.crt",
        "hostname": SystemInfo.MyHostName,
        "version": Version,
    }

    bad = RichStatus.fromError("broken", file="ca.crt")

    assert not bad
    assert bad.as_dict()["ok"] is False
    assert bad.as_dict()["error"] == "broken"


def test_timer():
    t = Timer("test")

    assert t.builds == 0
    assert t.elapsed == 0.0

    with t:
        time.sleep(0.01)

    assert t.builds == 1
    assert t.elapsed >= 0.01


def test_timer_records_failed_builds():
    t = Timer("test")

    with pytest.raises(RuntimeError):
        with t:
            raise RuntimeError("boom")

    assert t.builds == 1


def test_timer_gauge():
    registry = CollectorRegistry()
    t = Timer("Some Work", registry)

    with t:
        pass

    assert registry.get_sample_value("gatewaygraph_some_work_time_seconds") == t.elapsed
