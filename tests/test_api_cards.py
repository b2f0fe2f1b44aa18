"""
REACH Content Board
Tests — team / card HTTP API.

Covers:
    - Authentication (401 without a role)
    - Team bootstrap, stages and board endpoints
    - Card create / update / move / delete status codes and error envelope
    - Audit-log endpoint
    - Health endpoints, security headers and request id
"""

import pytest

from reach.core.exceptions import ConflictRetryableError
from reach.services import card_service


def _create_team(client, auth_headers, name="Studio"):
    res = client.post("/api/v1/teams", json={"name": name}, headers=auth_headers("admin"))
    assert res.status_code == 201
    return res.get_json()


def _stage_ids(team):
    return {s["canonical_name"]: s["id"] for s in team["stages"]}


def _create_card(client, headers, team_id, **payload):
    payload.setdefault("title", "Untitled")
    return client.post(f"/api/v1/teams/{team_id}/cards", json=payload, headers=headers)


@pytest.fixture()
def api_team(client, auth_headers):
    return _create_team(client, auth_headers)


# ═════════════════════════════════════════════════════════════════════════════
# AUTH
# ═════════════════════════════════════════════════════════════════════════════

class TestAuthentication:
    def test_missing_token(self, client, api_team):
        res = client.get(f"/api/v1/teams/{api_team['id']}/board")
        assert res.status_code == 401
        assert res.get_json()["code"] == "ERR_UNAUTHORIZED"

    def test_garbage_token(self, client, api_team):
        res = client.get(
            f"/api/v1/teams/{api_team['id']}/board",
            headers={"Authorization": "Bearer not-a-jwt"},
        )
        assert res.status_code == 401

    def test_unknown_role_is_forbidden(self, client, auth_headers, api_team):
        res = client.get(f"/api/v1/teams/{api_team['id']}/board", headers=auth_headers("intern"))
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"


# ═════════════════════════════════════════════════════════════════════════════
# TEAMS
# ═════════════════════════════════════════════════════════════════════════════

class TestTeamsAPI:
    def test_create_team(self, api_team):
        assert [s["canonical_name"] for s in api_team["stages"]] == [
            "research", "envision", "assemble", "connect", "hone",
        ]
        assert [s["position"] for s in api_team["stages"]] == [1, 2, 3, 4, 5]

    def test_create_team_requires_admin(self, client, auth_headers):
        res = client.post("/api/v1/teams", json={"name": "x"}, headers=auth_headers("strategist"))
        assert res.status_code == 403

    def test_create_team_requires_name(self, client, auth_headers):
        res = client.post("/api/v1/teams", json={}, headers=auth_headers("admin"))
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_list_stages(self, client, auth_headers, api_team):
        res = client.get(f"/api/v1/teams/{api_team['id']}/stages", headers=auth_headers("client"))
        assert res.status_code == 200
        assert res.get_json()["total"] == 5

    def test_unknown_team(self, client, auth_headers):
        res = client.get("/api/v1/teams/missing/board", headers=auth_headers("admin"))
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_board_for_client(self, client, auth_headers, api_team):
        stages = _stage_ids(api_team)
        admin = auth_headers("admin")
        _create_card(client, admin, api_team["id"], title="Early", stage_id=stages["research"])
        _create_card(client, admin, api_team["id"], title="Late", stage_id=stages["connect"])

        res = client.get(f"/api/v1/teams/{api_team['id']}/board", headers=auth_headers("client"))
        assert res.status_code == 200
        board = res.get_json()
        assert board["role"] == "client"
        titles = [c["title"] for col in board["stages"] for c in col["cards"]]
        assert titles == ["Late"]

    def test_list_cards(self, client, auth_headers, api_team):
        admin = auth_headers("admin")
        for title in ("a", "b"):
            _create_card(client, admin, api_team["id"], title=title)
        res = client.get(f"/api/v1/teams/{api_team['id']}/cards", headers=auth_headers("member"))
        assert [c["title"] for c in res.get_json()["items"]] == ["a", "b"]


# ═════════════════════════════════════════════════════════════════════════════
# CARDS
# ═════════════════════════════════════════════════════════════════════════════

class TestCardsAPI:
    def test_create_card(self, client, auth_headers, api_team):
        res = _create_card(client, auth_headers("scriptwriter", "sw-1"), api_team["id"], title="Hook")
        assert res.status_code == 201
        card = res.get_json()
        assert card["stage_name"] == "research"
        assert card["position"] == 1
        assert card["created_by"] == "sw-1"

    def test_create_card_missing_title(self, client, auth_headers, api_team):
        res = client.post(
            f"/api/v1/teams/{api_team['id']}/cards", json={}, headers=auth_headers("admin"),
        )
        assert res.status_code == 400

    def test_create_card_forbidden_stage(self, client, auth_headers, api_team):
        stages = _stage_ids(api_team)
        res = _create_card(
            client, auth_headers("scriptwriter"), api_team["id"], stage_id=stages["assemble"],
        )
        assert res.status_code == 403
        body = res.get_json()
        assert body["details"] == {"role": "scriptwriter", "action": "write", "stage": "assemble"}

    def test_create_card_invalid_priority(self, client, auth_headers, api_team):
        res = _create_card(client, auth_headers("admin"), api_team["id"], priority="asap")
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_VALIDATION_RULE"
        assert "priority" in res.get_json()["details"]

    def test_get_card(self, client, auth_headers, api_team):
        card = _create_card(client, auth_headers("admin"), api_team["id"]).get_json()
        assert client.get(f"/api/v1/cards/{card['id']}", headers=auth_headers("editor")).status_code == 200
        assert client.get(f"/api/v1/cards/{card['id']}", headers=auth_headers("client")).status_code == 403
        assert client.get("/api/v1/cards/missing", headers=auth_headers("admin")).status_code == 404

    def test_update_card_fields(self, client, auth_headers, api_team):
        card = _create_card(client, auth_headers("admin"), api_team["id"], title="Old").get_json()
        res = client.put(
            f"/api/v1/cards/{card['id']}", json={"title": "New", "tags": ["reel"]},
            headers=auth_headers("member"),
        )
        assert res.status_code == 200
        body = res.get_json()
        assert body["title"] == "New"
        assert body["tags"] == ["reel"]
        assert body["changed_fields"] == ["tags", "title"]
        assert body["moved"] is False

    def test_update_card_requires_object_body(self, client, auth_headers, api_team):
        card = _create_card(client, auth_headers("admin"), api_team["id"]).get_json()
        res = client.put(f"/api/v1/cards/{card['id']}", json=["x"], headers=auth_headers("admin"))
        assert res.status_code == 400

    def test_update_card_moves_to_destination(self, client, auth_headers, api_team):
        stages = _stage_ids(api_team)
        card = _create_card(client, auth_headers("admin"), api_team["id"]).get_json()
        res = client.put(
            f"/api/v1/cards/{card['id']}", json={"stage_id": stages["connect"]},
            headers=auth_headers("editor"),
        )
        assert res.status_code == 200
        assert res.get_json()["stage_name"] == "connect"

    def test_update_card_other_team_stage(self, client, auth_headers, api_team):
        other = _create_team(client, auth_headers, name="Rival")
        card = _create_card(client, auth_headers("admin"), api_team["id"]).get_json()
        res = client.put(
            f"/api/v1/cards/{card['id']}", json={"stage_id": _stage_ids(other)["research"]},
            headers=auth_headers("admin"),
        )
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_INVALID_TARGET"


class TestMoveAPI:
    @pytest.fixture()
    def board(self, client, auth_headers, api_team):
        stages = _stage_ids(api_team)
        admin = auth_headers("admin")
        research = [
            _create_card(client, admin, api_team["id"], title=f"r{i}").get_json()
            for i in range(1, 6)
        ]
        for i in range(1, 4):
            _create_card(client, admin, api_team["id"], title=f"a{i}", stage_id=stages["assemble"])
        return stages, research

    def _titles(self, client, auth_headers, team_id, stage_id):
        res = client.get(
            f"/api/v1/teams/{team_id}/cards?stage_id={stage_id}", headers=auth_headers("admin"),
        )
        return [(c["title"], c["position"]) for c in res.get_json()["items"]]

    def test_move_into_middle(self, client, auth_headers, api_team, board):
        stages, research = board
        res = client.put(
            f"/api/v1/cards/{research[4]['id']}/move",
            json={"stage_id": stages["assemble"], "position": 2},
            headers=auth_headers("member"),
        )
        assert res.status_code == 200
        body = res.get_json()
        assert body["moved"] is True
        assert body["position"] == 2
        assert self._titles(client, auth_headers, api_team["id"], stages["assemble"]) == [
            ("a1", 1), ("r5", 2), ("a2", 3), ("a3", 4),
        ]
        assert [p for _, p in self._titles(client, auth_headers, api_team["id"], stages["research"])] == [
            1, 2, 3, 4,
        ]

    def test_move_forbidden_destination(self, client, auth_headers, board):
        stages, research = board
        res = client.put(
            f"/api/v1/cards/{research[0]['id']}/move",
            json={"stage_id": stages["hone"], "position": 1},
            headers=auth_headers("scriptwriter"),
        )
        assert res.status_code == 403

    @pytest.mark.parametrize("payload, status, code", [
        ({"position": 1}, 400, "ERR_VALIDATION_REQUIRED"),
        ({"stage_id": "STAGE"}, 400, "ERR_VALIDATION_REQUIRED"),
        ({"stage_id": "STAGE", "position": 0}, 400, "ERR_INVALID_TARGET"),
        ({"stage_id": "STAGE", "position": "2"}, 400, "ERR_INVALID_TARGET"),
        ({"stage_id": "missing", "position": 1}, 404, "ERR_NOT_FOUND"),
    ])
    def test_move_validation(self, client, auth_headers, board, payload, status, code):
        stages, research = board
        if payload.get("stage_id") == "STAGE":
            payload = {**payload, "stage_id": stages["envision"]}
        res = client.put(
            f"/api/v1/cards/{research[0]['id']}/move", json=payload, headers=auth_headers("admin"),
        )
        assert res.status_code == status
        assert res.get_json()["code"] == code

    def test_repeat_move_is_noop(self, client, auth_headers, board):
        stages, research = board
        url = f"/api/v1/cards/{research[0]['id']}/move"
        payload = {"stage_id": stages["envision"], "position": 1}
        assert client.put(url, json=payload, headers=auth_headers("member")).get_json()["moved"] is True
        again = client.put(url, json=payload, headers=auth_headers("member")).get_json()
        assert again["moved"] is False
        assert again["reordered"] is False

    def test_conflict_is_retryable(self, client, auth_headers, board, monkeypatch):
        stages, research = board

        def _lost_race(*args, **kwargs):
            raise ConflictRetryableError()

        monkeypatch.setattr(card_service, "update_card", _lost_race)
        res = client.put(
            f"/api/v1/cards/{research[0]['id']}/move",
            json={"stage_id": stages["envision"], "position": 1},
            headers=auth_headers("admin"),
        )
        assert res.status_code == 409
        body = res.get_json()
        assert body["code"] == "ERR_CONFLICT_RETRYABLE"
        assert body["details"] == {"retryable": True}


class TestDeleteAndAuditAPI:
    def test_delete_and_history(self, client, auth_headers, api_team):
        admin = auth_headers("admin")
        first = _create_card(client, admin, api_team["id"], title="first").get_json()
        second = _create_card(client, admin, api_team["id"], title="second").get_json()

        res = client.delete(f"/api/v1/cards/{first['id']}", headers=auth_headers("strategist"))
        assert res.status_code == 403

        res = client.delete(f"/api/v1/cards/{first['id']}", headers=admin)
        assert res.status_code == 200
        assert res.get_json() == {"deleted": True, "id": first["id"], "shifted": 1}

        res = client.get(f"/api/v1/cards/{second['id']}", headers=admin)
        assert res.get_json()["position"] == 1

        logs = client.get(f"/api/v1/cards/{first['id']}/audit-logs", headers=admin).get_json()
        assert [entry["action"] for entry in logs["items"]] == ["deleted", "created"]
        assert logs["items"][0]["actor_role"] == "admin"

    def test_move_history(self, client, auth_headers, api_team):
        stages = _stage_ids(api_team)
        card = _create_card(client, auth_headers("admin"), api_team["id"]).get_json()
        client.put(
            f"/api/v1/cards/{card['id']}/move",
            json={"stage_id": stages["envision"], "position": 1},
            headers=auth_headers("scriptwriter", "sw-7"),
        )
        logs = client.get(
            f"/api/v1/cards/{card['id']}/audit-logs", headers=auth_headers("scriptwriter"),
        ).get_json()["items"]
        assert logs[0]["action"] == "moved"
        assert logs[0]["actor_id"] == "sw-7"
        assert logs[0]["diff"]["to_stage"] == "envision"

    def test_audit_log_pagination(self, client, auth_headers, api_team):
        admin = auth_headers("admin")
        card = _create_card(client, admin, api_team["id"], title="v0").get_json()
        for version in range(1, 4):
            client.put(f"/api/v1/cards/{card['id']}", json={"title": f"v{version}"}, headers=admin)

        res = client.get(f"/api/v1/cards/{card['id']}/audit-logs?limit=2", headers=admin)
        body = res.get_json()
        assert body["total"] == 4
        assert len(body["items"]) == 2
        assert body["items"][0]["diff"]["title"]["new"] == "v3"

        tail = client.get(
            f"/api/v1/cards/{card['id']}/audit-logs?limit=2&offset=2", headers=admin,
        ).get_json()
        assert [entry["action"] for entry in tail["items"]] == ["updated", "created"]

    def test_compact_stage_endpoint(self, client, auth_headers, api_team):
        stages = _stage_ids(api_team)
        _create_card(client, auth_headers("admin"), api_team["id"], title="dense")
        url = f"/api/v1/teams/{api_team['id']}/stages/{stages['research']}/compact"

        res = client.post(url, headers=auth_headers("admin"))
        assert res.status_code == 200
        assert res.get_json() == {"stage_id": stages["research"], "renumbered": 0}
        assert client.post(url, headers=auth_headers("member")).status_code == 403


# ═════════════════════════════════════════════════════════════════════════════
# PLATFORM
# ═════════════════════════════════════════════════════════════════════════════

class TestPlatform:
    def test_health(self, client):
        assert client.get("/api/v1/health").status_code == 200
        assert client.get("/api/v1/health/ready").get_json() == {"status": "ok"}
        live = client.get("/api/v1/health/live").get_json()
        assert live["checks"]["database"]["status"] == "ok"

    def test_security_headers_and_request_id(self, client):
        res = client.get("/api/v1/health/ready", headers={"X-Request-ID": "abc123"})
        assert res.headers["X-Content-Type-Options"] == "nosniff"
        assert res.headers["X-Frame-Options"] == "DENY"
        assert res.headers["X-Request-ID"] == "abc123"
        assert "X-Request-Duration-Ms" in res.headers

    def test_unknown_api_path(self, client):
        res = client.get("/api/v1/nothing-here")
        assert res.status_code == 404
        assert res.get_json()["error"] == "Not found"

    def test_non_json_body_rejected(self, client, auth_headers):
        res = client.post(
            "/api/v1/teams", data="name=x", content_type="text/plain",
            headers=auth_headers("admin"),
        )
        assert res.status_code == 415
