from __future__ import annotations

import pytest

from beacon_edge.config import load_config_from_env
from beacon_edge.errors import ConfigError, LoopDetected, NotAuthenticated
from beacon_edge.guard import (
    any_key_matches,
    authenticate_edge,
    constant_time_equal,
    next_hop_count,
    normalize_endpoint_id,
    parse_hop,
)


def test_constant_time_equal() -> None:
    assert constant_time_equal("secret", "secret")
    assert not constant_time_equal("secret", "secreT")
    assert not constant_time_equal("Xecret", "secret")
    assert not constant_time_equal("secret", "secret1")
    assert constant_time_equal("", "")
    assert constant_time_equal(None, "")


def test_any_key_matches_ignores_blank_and_trims() -> None:
    assert any_key_matches(" k2 ", ["k1", "k2"])
    assert not any_key_matches("", ["k1", ""])
    assert not any_key_matches(None, ["k1"])
    assert not any_key_matches("k3", ["k1", "k2"])


def test_normalize_endpoint_id_strips_separators() -> None:
    assert normalize_endpoint_id("aaaa-bbbb-cccc") == "aaaabbbbcccc"
    assert normalize_endpoint_id("AbC") == "AbC"


def test_parse_hop_defaults_to_zero() -> None:
    assert parse_hop(None) == 0
    assert parse_hop("") == 0
    assert parse_hop("abc") == 0
    assert parse_hop("3") == 3
    assert parse_hop(" 4x") == 4


def test_hop_below_max_is_incremented() -> None:
    assert next_hop_count(None, 5) == 1
    assert next_hop_count("4", 5) == 5


def test_hop_at_max_is_a_loop() -> None:
    with pytest.raises(LoopDetected):
        next_hop_count("5", 5)
    with pytest.raises(LoopDetected):
        next_hop_count("2", 2)


def test_authenticate_edge() -> None:
    config = load_config_from_env({"EDGE_INGEST_KEYS": "a, b", "EDGE_EXPECT_ENDPOINT_ID": "abcd"})
    authenticate_edge("b", "abcd", config)

    with pytest.raises(NotAuthenticated):
        authenticate_edge("c", "abcd", config)
    with pytest.raises(NotAuthenticated):
        authenticate_edge("a", "other", config)


def test_authenticate_edge_without_keys_is_misconfigured() -> None:
    with pytest.raises(ConfigError):
        authenticate_edge("a", "abcd", load_config_from_env({}))
