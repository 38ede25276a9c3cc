from __future__ import annotations

from pgpedge.edge.hosts import is_allowed_host, parse_allowed_hosts


def test_parse_allowed_hosts_unset_means_allow_all() -> None:
    assert parse_allowed_hosts(None) is None
    assert parse_allowed_hosts("") is None


def test_parse_allowed_hosts_trims_and_lowercases() -> None:
    assert parse_allowed_hosts(" Example.com, keys.example.org ,,") == ["example.com", "keys.example.org"]


def test_no_allow_list_admits_missing_host() -> None:
    assert is_allowed_host(None, None)


def test_allow_list_requires_host_header() -> None:
    assert not is_allowed_host(None, ["example.com"])
    assert not is_allowed_host("", ["example.com"])


def test_host_match_is_case_insensitive_and_exact() -> None:
    allowed = parse_allowed_hosts("example.com")
    assert is_allowed_host("EXAMPLE.com", allowed)
    assert not is_allowed_host("other.com", allowed)
    assert not is_allowed_host("keys.example.com", allowed)
    assert not is_allowed_host("example.com:8443", allowed)


def test_allow_list_without_entries_admits_any_named_host() -> None:
    allowed = parse_allowed_hosts(" , ")
    assert allowed == []
    assert is_allowed_host("anything.test", allowed)
    assert not is_allowed_host(None, allowed)
