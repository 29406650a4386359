"""HTTP and WebSocket tests against the assembled FastAPI app."""

import pytest
from fastapi.testclient import TestClient

from storypoint.app import create_app


def register(client, email="host@example.com"):
    response = client.post("/api/auth/hosts", json={"email": email})
    assert response.status_code == 201
    body = response.json()
    return body["user"]["id"], {"Authorization": f"Bearer {body['token']}"}, body["token"]


def create(client, headers, **overrides):
    payload = {
        "name": "Sprint 12",
        "scaleType": "fibonacci",
        "notificationsEnabled": False,
        "stories": [{"title": "Login page"}, {"title": "Signup page"}],
    }
    payload.update(overrides)
    response = client.post("/api/sessions", json=payload, headers=headers)
    assert response.status_code == 201
    return response.json()["session"]


@pytest.fixture
def host(client):
    host_id, headers, token = register(client)
    return {"id": host_id, "headers": headers, "token": token}


class TestHealth:

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_health_reports_connections(self, client):
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        assert body["connections"] == 0


class TestHostAccounts:

    def test_register_returns_token_once(self, client):
        response = client.post("/api/auth/hosts", json={"email": "Lead@Example.com"})
        assert response.status_code == 201
        body = response.json()
        assert body["user"]["email"] == "lead@example.com"
        assert body["token"]

    def test_duplicate_email_conflicts(self, client, host):
        response = client.post("/api/auth/hosts", json={"email": "host@example.com"})
        assert response.status_code == 409

    def test_invalid_email(self, client):
        response = client.post("/api/auth/hosts", json={"email": "not-an-email"})
        assert response.status_code == 422

    def test_missing_token(self, client):
        assert client.get("/api/sessions").status_code == 401
        assert client.get("/api/sessions", headers={"Authorization": "Token abc"}).status_code == 401

    def test_wrong_token(self, client, host):
        response = client.get("/api/sessions", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 403


class TestSessions:

    def test_create_activates_first_story(self, client, host):
        session = create(client, host["headers"])
        assert session["scale"] == [1, 2, 3, 5, 8, 13, 21, 34, 55, 89]
        assert session["hostId"] == host["id"]

        detail = client.get(f"/api/sessions/{session['id']}", headers=host["headers"]).json()
        stories = detail["stories"]
        assert [story["title"] for story in stories] == ["Login page", "Signup page"]
        assert [story["status"] for story in stories] == ["active", "pending"]
        assert detail["session"]["activeStoryId"] == stories[0]["id"]

    def test_custom_scale(self, client, host):
        session = create(client, host["headers"], scaleType="custom", customScale="13, 1, x, 5, 5, 0")
        assert session["scale"] == [1, 5, 13]

    def test_blank_story_title_rejected(self, client, host):
        response = client.post("/api/sessions", headers=host["headers"], json={
            "name": "Sprint", "stories": [{"title": "   "}]
        })
        assert response.status_code == 422

    def test_list_only_own_sessions(self, client, host):
        create(client, host["headers"])
        _, other_headers, _ = register(client, "other@example.com")
        create(client, other_headers, name="Theirs", stories=[{"title": "X"}])

        sessions = client.get("/api/sessions", headers=host["headers"]).json()["sessions"]
        assert len(sessions) == 1
        assert sessions[0]["name"] == "Sprint 12"
        assert sessions[0]["storiesCount"] == 2

    def test_detail_of_other_hosts_session_forbidden(self, client, host):
        session = create(client, host["headers"])
        _, other_headers, _ = register(client, "other@example.com")
        response = client.get(f"/api/sessions/{session['id']}", headers=other_headers)
        assert response.status_code == 403
        assert response.json()["detail"] == "Access denied"

    def test_check(self, client, host):
        session = create(client, host["headers"])
        response = client.get(f"/api/sessions/{session['id']}/check")
        assert response.json() == {"exists": True, "sessionName": "Sprint 12"}
        assert client.get("/api/sessions/missing/check").status_code == 404

    def test_join_and_alias_conflict(self, client, host):
        session = create(client, host["headers"])
        url = f"/api/sessions/{session['id']}/join"

        response = client.post(url, json={"alias": "Alice"})
        assert response.status_code == 201
        body = response.json()
        assert body["sessionId"] == session["id"]
        assert body["sessionName"] == "Sprint 12"
        assert body["participant"]["alias"] == "Alice"
        assert body["participant"]["isConnected"] is True

        assert client.post(url, json={"alias": "alice"}).status_code == 409

    def test_join_unknown_session(self, client):
        assert client.post("/api/sessions/missing/join", json={"alias": "Alice"}).status_code == 404

    def test_delete(self, client, host):
        session = create(client, host["headers"])
        _, other_headers, _ = register(client, "other@example.com")
        assert client.delete(f"/api/sessions/{session['id']}", headers=other_headers).status_code == 403

        response = client.delete(f"/api/sessions/{session['id']}", headers=host["headers"])
        assert response.json() == {"success": True}
        assert client.get(f"/api/sessions/{session['id']}/check").status_code == 404


class TestRestart:

    def test_aliases_free_after_restart(self, client, host, settings, engine):
        session = create(client, host["headers"])
        url = f"/api/sessions/{session['id']}/join"
        first = client.post(url, json={"alias": "Alice"}).json()["participant"]
        assert client.post(url, json={"alias": "alice"}).status_code == 409

        with TestClient(create_app(settings=settings, engine=engine)) as restarted:
            response = restarted.post(url, json={"alias": "alice"})
            assert response.status_code == 200
            assert response.json()["participant"]["id"] == first["id"]
            assert response.json()["participant"]["isConnected"] is True


class TestWebSocket:

    def test_unknown_message_type(self, client):
        with client.websocket_connect("/api/ws/sessions") as ws:
            ws.send_json({"type": "dance"})
            assert ws.receive_json() == {"type": "error", "message": "Unknown message type", "code": "validation"}

    def test_voting_round(self, client, host):
        session = create(client, host["headers"], notificationsEnabled=True)
        session_id = session["id"]
        first_story = session["activeStoryId"]

        with client.websocket_connect("/api/ws/sessions") as host_ws:
            host_ws.send_json({
                "type": "host_join_session",
                "sessionId": session_id,
                "hostId": host["id"],
                "credential": host["token"],
            })
            assert host_ws.receive_json()["type"] == "host_session_joined"

            joined = client.post(f"/api/sessions/{session_id}/join", json={"alias": "Alice"}).json()
            participant_id = joined["participant"]["id"]

            with client.websocket_connect("/api/ws/sessions") as alice_ws:
                alice_ws.send_json({"type": "join_session", "sessionId": session_id, "participantId": participant_id})
                snapshot = alice_ws.receive_json()
                assert snapshot["type"] == "session_joined"
                assert snapshot["activeStory"]["id"] == first_story
                assert host_ws.receive_json()["type"] == "participant_joined"

                alice_ws.send_json({"type": "vote", "sessionId": session_id, "storyId": first_story, "value": 5})
                assert [alice_ws.receive_json()["type"] for _ in range(3)] == [
                    "vote_recorded", "participant_voted", "all_voted"
                ]
                voted = host_ws.receive_json()
                assert voted == {"type": "participant_voted", "participantId": participant_id, "storyId": first_story}
                assert host_ws.receive_json()["type"] == "all_voted"

                host_ws.send_json({"type": "reveal_votes", "sessionId": session_id, "storyId": first_story})
                revealed = host_ws.receive_json()
                assert revealed["type"] == "votes_revealed"
                assert revealed["finalEstimate"] == 5
                assert [vote["value"] for vote in revealed["votes"]] == [5]
                assert alice_ws.receive_json() == revealed

                host_ws.send_json({"type": "next_story", "sessionId": session_id, "currentStoryId": first_story})
                advanced = host_ws.receive_json()
                assert advanced["type"] == "next_story_activated"
                assert advanced["finalEstimate"] == 5
                assert alice_ws.receive_json() == advanced

            assert host_ws.receive_json() == {"type": "participant_disconnected", "participantId": participant_id}
