"""Tests for admin endpoints."""

from fastapi.testclient import TestClient

from map_veto.api.app import create_app
from map_veto.domain.sessions import SessionFormat
from tests.conftest import ADMIN_HEADERS, make_ready_session, make_started_session


def _create_maps(client: TestClient, count: int) -> list[str]:
    map_ids = []
    for index in range(1, count + 1):
        created = client.post(
            "/admin/maps",
            json={
                "name": f"Map {index}",
                "image_url": f"https://cdn.example.com/maps/{index}.png",
            },
            headers=ADMIN_HEADERS,
        )
        assert created.status_code == 201
        map_ids.append(created.json()["id"])
    return map_ids


def test_admin_requires_token(container) -> None:
    client = TestClient(create_app(container))

    response = client.get("/admin/health")
    wrong = client.get("/admin/health", headers={"X-Admin-Token": "nope"})
    ok = client.get("/admin/health", headers=ADMIN_HEADERS)

    assert response.status_code == 401
    assert wrong.status_code == 401
    assert ok.json() == {"status": "ok"}


def test_mutations_require_admin_id(container) -> None:
    client = TestClient(create_app(container))

    response = client.post(
        "/admin/sessions",
        json={"match_name": "Final", "format": "ABBA"},
        headers={"X-Admin-Token": "admin-token"},
    )

    assert response.status_code == 422
    assert response.json()["error"] == "MISSING_ADMIN_ID"


def test_session_setup_through_api(container) -> None:
    client = TestClient(create_app(container))

    created = client.post(
        "/admin/sessions",
        json={"match_name": "Final", "format": "ABBA", "map_pool_size": 3},
        headers=ADMIN_HEADERS,
    )
    assert created.status_code == 201
    session_id = created.json()["session"]["id"]
    assert created.json()["session"]["status"] == "DRAFT"

    for role, team in [("PLAYER_A", "Alpha"), ("PLAYER_B", "Bravo")]:
        seat = client.post(
            f"/admin/sessions/{session_id}/seats",
            json={"role": role, "team_name": team},
            headers=ADMIN_HEADERS,
        )
        assert seat.status_code == 200
        assert len(seat.json()["token"]) == 32

    pooled = client.put(
        f"/admin/sessions/{session_id}/maps",
        json={"map_ids": _create_maps(client, 3)},
        headers=ADMIN_HEADERS,
    )
    assert pooled.json()["session"]["status"] == "WAITING"

    started = client.post(
        f"/admin/sessions/{session_id}/start", headers=ADMIN_HEADERS
    )
    assert started.status_code == 200
    body = started.json()
    assert body["session"]["status"] == "IN_PROGRESS"
    assert body["active_role"] == "PLAYER_A"
    assert all("ip_address" not in player for player in body["players"])


def test_out_of_range_values_map_to_422(container) -> None:
    client = TestClient(create_app(container))

    response = client.post(
        "/admin/sessions",
        json={"match_name": "Final", "format": "ABBA", "turn_timer_seconds": 5},
        headers=ADMIN_HEADERS,
    )

    assert response.status_code == 422
    payload = response.json()
    assert payload["error"] == "OUT_OF_RANGE"
    assert payload["details"]["min"] == 10


def test_illegal_transition_maps_to_409(container) -> None:
    client = TestClient(create_app(container))
    session = container.session_service.create_session(
        "admin-1", "Final", SessionFormat.ABBA
    )

    response = client.post(
        f"/admin/sessions/{session.id}/start", headers=ADMIN_HEADERS
    )

    assert response.status_code == 409
    assert response.json() == {
        "error": "INVALID_TRANSITION",
        "message": "Cannot move a session from DRAFT to IN_PROGRESS.",
        "details": {"from": "DRAFT", "to": "IN_PROGRESS"},
    }


def test_pause_and_resume(container) -> None:
    client = TestClient(create_app(container))
    session, _ = make_started_session(container.session_service)

    paused = client.post(f"/admin/sessions/{session.id}/pause", headers=ADMIN_HEADERS)
    resumed = client.post(
        f"/admin/sessions/{session.id}/resume", headers=ADMIN_HEADERS
    )

    assert paused.json()["session"]["status"] == "PAUSED"
    assert resumed.json()["session"]["status"] == "IN_PROGRESS"


def test_update_and_list_sessions(container) -> None:
    client = TestClient(create_app(container))
    session, _ = make_ready_session(container.session_service)

    patched = client.patch(
        f"/admin/sessions/{session.id}",
        json={"match_name": "Renamed"},
        headers=ADMIN_HEADERS,
    )
    listed = client.get(
        "/admin/sessions", params={"status": "WAITING"}, headers=ADMIN_HEADERS
    )

    assert patched.json()["session"]["match_name"] == "Renamed"
    assert [s["match_name"] for s in listed.json()["sessions"]] == ["Renamed"]


def test_delete_session_cascades(container) -> None:
    client = TestClient(create_app(container))
    session, _ = make_ready_session(container.session_service)

    deleted = client.delete(f"/admin/sessions/{session.id}", headers=ADMIN_HEADERS)
    missing = client.get(f"/admin/sessions/{session.id}", headers=ADMIN_HEADERS)

    assert deleted.status_code == 200
    assert deleted.json()["deleted"]["players"] == 2
    assert deleted.json()["deleted"]["maps"] == 5
    assert deleted.json()["deleted"]["session"] == 1
    assert missing.status_code == 404
    assert missing.json()["error"] == "SESSION_NOT_FOUND"


def test_audit_log_endpoint_caps_limit(container) -> None:
    client = TestClient(create_app(container))
    session, _ = make_ready_session(container.session_service)

    response = client.get(
        f"/admin/sessions/{session.id}/audit",
        params={"limit": 2},
        headers=ADMIN_HEADERS,
    )

    entries = response.json()["entries"]
    assert [e["action"] for e in entries] == ["SESSION_FINALIZED", "MAPS_ASSIGNED"]
    assert entries[0]["actor_type"] == "ADMIN"


def test_maintenance_endpoints(container, clock) -> None:
    client = TestClient(create_app(container))
    make_ready_session(container.session_service)
    started, _ = make_started_session(container.session_service, turn_timer_seconds=10)
    clock.advance(days=15)

    expired = client.post("/admin/maintenance/expire-stale", headers=ADMIN_HEADERS)
    purged = client.post("/admin/maintenance/purge-ips", headers=ADMIN_HEADERS)
    timeouts = client.post("/admin/maintenance/timeouts", headers=ADMIN_HEADERS)

    assert expired.json() == {"expired_count": 1, "ips_cleared": 0}
    assert purged.json() == {"sessions_processed": 0, "ips_cleared": 0}
    assert timeouts.json() == {"timeouts_applied": 1}
    assert container.repository.get_session(started.id).current_turn == 1


def test_map_pool_rejects_unknown_and_inactive_maps(container) -> None:
    client = TestClient(create_app(container))
    session = container.session_service.create_session(
        "admin-1", "Final", SessionFormat.ABBA, map_pool_size=3
    )
    map_ids = _create_maps(client, 3)
    client.post(f"/admin/maps/{map_ids[2]}/deactivate", headers=ADMIN_HEADERS)

    unknown = client.put(
        f"/admin/sessions/{session.id}/maps",
        json={"map_ids": [*map_ids[:2], "00000000-0000-0000-0000-000000000000"]},
        headers=ADMIN_HEADERS,
    )
    inactive = client.put(
        f"/admin/sessions/{session.id}/maps",
        json={"map_ids": map_ids},
        headers=ADMIN_HEADERS,
    )

    assert unknown.status_code == 404
    assert unknown.json()["error"] == "MAP_NOT_FOUND"
    assert inactive.status_code == 422
    assert inactive.json()["error"] == "MAP_INACTIVE"


def test_map_library_endpoints(container) -> None:
    client = TestClient(create_app(container))
    [map_id] = _create_maps(client, 1)

    renamed = client.patch(
        f"/admin/maps/{map_id}", json={"name": "Dust"}, headers=ADMIN_HEADERS
    )
    deactivated = client.post(
        f"/admin/maps/{map_id}/deactivate", headers=ADMIN_HEADERS
    )
    again = client.post(f"/admin/maps/{map_id}/deactivate", headers=ADMIN_HEADERS)
    active = client.get("/admin/maps", headers=ADMIN_HEADERS)
    everything = client.get(
        "/admin/maps", params={"include_inactive": True}, headers=ADMIN_HEADERS
    )
    reactivated = client.post(
        f"/admin/maps/{map_id}/reactivate", headers=ADMIN_HEADERS
    )

    assert renamed.json()["name"] == "Dust"
    assert deactivated.json()["is_active"] is False
    assert again.status_code == 409
    assert again.json()["error"] == "MAP_ALREADY_INACTIVE"
    assert active.json() == {"maps": []}
    assert [item["id"] for item in everything.json()["maps"]] == [map_id]
    assert reactivated.json()["is_active"] is True
    bad_url = client.post(
        "/admin/maps",
        json={"name": "Nuke", "image_url": "not a url"},
        headers=ADMIN_HEADERS,
    )
    assert bad_url.status_code == 422
    assert bad_url.json()["error"] == "INVALID_URL"
    missing = client.get(
        "/admin/maps/00000000-0000-0000-0000-000000000000", headers=ADMIN_HEADERS
    )
    assert missing.status_code == 404


def test_team_library_endpoints(container) -> None:
    client = TestClient(create_app(container))

    created = client.post(
        "/admin/teams",
        json={"name": "Alpha", "logo_url": "https://cdn.example.com/alpha.png"},
        headers=ADMIN_HEADERS,
    )
    duplicate = client.post(
        "/admin/teams", json={"name": "Alpha"}, headers=ADMIN_HEADERS
    )
    internal = client.post(
        "/admin/teams",
        json={"name": "Bravo", "logo_url": "http://127.0.0.1/logo.png"},
        headers=ADMIN_HEADERS,
    )
    team_id = created.json()["id"]
    updated = client.patch(
        f"/admin/teams/{team_id}",
        json={"name": "Alpha Squad", "remove_logo": True},
        headers=ADMIN_HEADERS,
    )
    deleted = client.delete(f"/admin/teams/{team_id}", headers=ADMIN_HEADERS)
    listed = client.get("/admin/teams", headers=ADMIN_HEADERS)

    assert created.status_code == 201
    assert duplicate.status_code == 409
    assert duplicate.json()["error"] == "TEAM_NAME_TAKEN"
    assert internal.status_code == 422
    assert internal.json()["error"] == "INVALID_URL"
    assert updated.json()["name"] == "Alpha Squad"
    assert updated.json()["logo_url"] is None
    assert deleted.json() == {"deleted": True}
    assert listed.json() == {"teams": []}
