from tests.helpers import auth_headers


def test_start_call_and_conflict(client, agents, assigned_query):
    headers = auth_headers(agents.admin)

    r = client.post(f"/api/queries/{assigned_query.id}/calls", json={"mode": "VIDEO"}, headers=headers)
    assert r.status_code == 201
    data = r.json()
    assert data["session"]["status"] == "CREATED"
    assert data["admin_token"].startswith("owner-token-")
    assert data["user_token"].startswith("guest-token-")

    r = client.post(f"/api/queries/{assigned_query.id}/calls", json={"mode": "AUDIO"}, headers=headers)
    assert r.status_code == 409
    detail = r.json()["detail"]
    assert detail["active_session_id"] == data["session"]["id"]
    assert detail["room_name"] == data["session"]["room_name"]

    r = client.get(f"/api/queries/{assigned_query.id}/calls/active")
    assert r.json()["id"] == data["session"]["id"]


def test_provider_outage_is_bad_gateway(client, agents, assigned_query, room_provider):
    room_provider.fail_create = True
    r = client.post(
        f"/api/queries/{assigned_query.id}/calls", json={"mode": "VIDEO"}, headers=auth_headers(agents.admin)
    )
    assert r.status_code == 502


def test_call_request_accept_flow(client, agents, assigned_query):
    r = client.post(
        f"/api/queries/{assigned_query.id}/call-requests",
        json={"mode": "AUDIO", "donor_id": assigned_query.donor_id},
    )
    assert r.status_code == 201
    request_id = r.json()["call_request"]["id"]
    message_id = r.json()["message"]["id"]

    r = client.get(f"/api/queries/{assigned_query.id}/call-requests", headers=auth_headers(agents.admin))
    assert [cr["id"] for cr in r.json()["call_requests"]] == [request_id]

    r = client.post(
        f"/api/queries/{assigned_query.id}/call-requests/accept", json={}, headers=auth_headers(agents.admin)
    )
    assert r.status_code == 200
    data = r.json()
    assert data["call_request"]["status"] == "ACCEPTED"
    assert data["message"]["id"] == message_id
    assert "ACCEPTED by Alice Admin" in data["message"]["content"]
    assert data["session"]["originating_request_id"] == request_id


def test_reject_call_request(client, agents, assigned_query):
    r = client.post(f"/api/queries/{assigned_query.id}/call-requests", json={"mode": "VIDEO"})
    request_id = r.json()["call_request"]["id"]

    r = client.post(f"/api/call-requests/{request_id}/reject", headers=auth_headers(agents.other_admin))
    assert r.status_code == 403

    r = client.post(f"/api/call-requests/{request_id}/reject", headers=auth_headers(agents.admin))
    assert r.status_code == 200
    assert r.json()["call_request"]["status"] == "REJECTED"

    r = client.post(f"/api/call-requests/{request_id}/reject", headers=auth_headers(agents.admin))
    assert r.status_code == 409


def test_status_update_and_end(client, agents, assigned_query):
    r = client.post(
        f"/api/queries/{assigned_query.id}/calls", json={"mode": "VIDEO"}, headers=auth_headers(agents.admin)
    )
    session = r.json()["session"]
    room_name = session["room_name"]

    r = client.patch(f"/api/calls/{room_name}/status", json={"status": "STARTED"})
    assert r.status_code == 200
    assert r.json()["status"] == "STARTED"

    r = client.post(f"/api/calls/{room_name}/end/donor", json={"donor_id": "intruder"})
    assert r.status_code == 403

    r = client.post(f"/api/calls/{room_name}/end/donor", json={"donor_id": assigned_query.donor_id})
    assert r.status_code == 200
    assert r.json()["status"] == "ENDED"

    r = client.patch(f"/api/calls/{room_name}/status", json={"status": "STARTED"})
    assert r.status_code == 409

    r = client.get(f"/api/calls/sessions/{session['id']}")
    assert r.json()["status"] == "ENDED"
    assert client.get(f"/api/queries/{assigned_query.id}/calls/active").json() is None

    r = client.post("/api/calls/no-such-room/end", headers=auth_headers(agents.admin))
    assert r.status_code == 404
