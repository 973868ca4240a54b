"""Tests for settings helpers."""

from map_veto.config import Settings, parse_forwarded_for


def test_parse_forwarded_for_takes_first_hop() -> None:
    assert parse_forwarded_for("203.0.113.5, 10.0.0.1") == "203.0.113.5"
    assert parse_forwarded_for(" 198.51.100.2 ") == "198.51.100.2"
    assert parse_forwarded_for("") is None
    assert parse_forwarded_for(None) is None


def test_uses_supabase_requires_both_values() -> None:
    assert Settings(admin_token="t", supabase_url=None).uses_supabase is False
    assert (
        Settings(
            admin_token="t",
            supabase_url="https://example.supabase.co",
            supabase_service_key=None,
        ).uses_supabase
        is False
    )
    assert (
        Settings(
            admin_token="t",
            supabase_url="https://example.supabase.co",
            supabase_service_key="key",
        ).uses_supabase
        is True
    )
