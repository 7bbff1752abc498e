"""Tests for configuration helpers."""

from billing_recon.config import Settings, parse_comma_list, parse_key_value_pairs


def test_parse_comma_list_defaults() -> None:
    assert parse_comma_list(None, ["a"]) == ["a"]


def test_parse_comma_list_splits_string() -> None:
    assert parse_comma_list("x, y, ,z", ["a"]) == ["x", "y", "z"]


def test_parse_key_value_pairs_skips_malformed_items() -> None:
    assert parse_key_value_pairs("env=prod, broken, team = billing,empty=") == {
        "env": "prod",
        "team": "billing",
    }
    assert parse_key_value_pairs(None) == {}


def test_empty_database_url_disables_storage() -> None:
    assert Settings(database_url="").storage_enabled is False
    assert Settings(database_url="sqlite+aiosqlite:///:memory:").storage_enabled is True


def test_cors_origins_from_env(monkeypatch) -> None:
    monkeypatch.setenv("CORS_ORIGINS", "http://a.test, http://b.test")
    assert Settings().cors_origins == ["http://a.test", "http://b.test"]
