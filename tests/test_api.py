"""End-to-end tests through the JSON API"""


def _create_group(client, **fields):
    resp = client.post("/api/groups", json={"name": "Team lunch", "budget": "500000", **fields})
    assert resp.status_code == 201
    return resp.get_json()


def _enroll(client, group_id, names=("Ana", "Ben", "Cai")):
    resp = client.post(f"/api/groups/{group_id}/participants", json={
        "participants": [{"name": n, "email": f"{n.lower()}@example.com"} for n in names],
    })
    assert resp.status_code == 201
    return {p["name"]: p for p in resp.get_json()["participants"]}


def test_groups_require_login(client):
    assert client.get("/api/groups").status_code == 401
    assert client.post("/api/groups", json={"name": "x"}).status_code == 401


def test_register_login_logout(client):
    resp = client.post("/api/auth/register", json={"name": "Olivia", "email": "Olivia@Example.com", "password": "correct horse"})
    assert resp.status_code == 201
    assert resp.get_json()["email"] == "olivia@example.com"

    client.post("/api/auth/logout")
    assert client.get("/api/auth/me").status_code == 401

    assert client.post("/api/auth/login", json={"email": "olivia@example.com", "password": "nope nope"}).status_code == 401
    assert client.post("/api/auth/login", json={"email": "olivia@example.com", "password": "correct horse"}).status_code == 200
    assert client.get("/api/auth/me").get_json()["name"] == "Olivia"


def test_register_validates_input(client):
    assert client.post("/api/auth/register", json={"name": "", "email": "a@b.c", "password": "12345678"}).status_code == 400
    assert client.post("/api/auth/register", json={"name": "A", "email": "a@b.c", "password": "short"}).status_code == 400


def test_create_and_update_group(auth_client):
    group = _create_group(auth_client, currency="usd", draw_date="2026-12-20")
    assert group["status"] == "pending"
    assert group["currency"] == "USD"
    assert group["draw_date"] == "2026-12-20"

    resp = auth_client.put(f"/api/groups/{group['id']}", json={"description": "Bring snacks"})
    assert resp.get_json()["description"] == "Bring snacks"

    assert auth_client.put(f"/api/groups/{group['id']}", json={"budget": "lots"}).status_code == 400
    assert [g["id"] for g in auth_client.get("/api/groups").get_json()] == [group["id"]]


def test_full_draw_flow(auth_client, mailer, dispatcher):
    group = _create_group(auth_client)
    people = _enroll(auth_client, group["id"])

    resp = auth_client.put(
        f"/api/groups/{group['id']}/participants/{people['Ana']['id']}/exclusions",
        json={"exclusions": [people["Ben"]["id"]]},
    )
    assert resp.get_json() == {"exclusions": [people["Ben"]["id"]]}

    resp = auth_client.post(f"/api/groups/{group['id']}/draw")
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["notifications_queued"] == 3
    mapping = {a["giver"]["name"]: a["receiver"]["name"] for a in body["assignments"]}
    assert mapping == {"Ana": "Cai", "Cai": "Ben", "Ben": "Ana"}

    detail = auth_client.get(f"/api/groups/{group['id']}").get_json()
    assert detail["status"] == "drawn"
    assert all(p["assigned"] for p in detail["participants"])

    # second draw is refused
    assert auth_client.post(f"/api/groups/{group['id']}/draw").status_code == 409

    dispatcher.shutdown(drain=True, timeout=5)
    assert mailer.recipients() == ["ana@example.com", "ben@example.com", "cai@example.com"]


def test_infeasible_draw_reports_422(auth_client):
    group = _create_group(auth_client)
    people = _enroll(auth_client, group["id"])
    for name, other in (("Ana", "Ben"), ("Ben", "Ana")):
        auth_client.put(
            f"/api/groups/{group['id']}/participants/{people[name]['id']}/exclusions",
            json={"exclusions": [people[other]["id"]]},
        )

    resp = auth_client.post(f"/api/groups/{group['id']}/draw")

    assert resp.status_code == 422
    assert resp.get_json()["kind"] == "infeasible"
    assert resp.get_json()["attempts"] == 100
    assert auth_client.get(f"/api/groups/{group['id']}").get_json()["status"] == "pending"


def test_draw_with_too_few_participants(auth_client):
    group = _create_group(auth_client)
    _enroll(auth_client, group["id"], names=("Ana", "Ben"))
    assert auth_client.post(f"/api/groups/{group['id']}/draw").status_code == 409


def test_roster_frozen_after_draw(auth_client):
    group = _create_group(auth_client)
    people = _enroll(auth_client, group["id"])
    auth_client.post(f"/api/groups/{group['id']}/draw")

    resp = auth_client.post(f"/api/groups/{group['id']}/participants", json={"name": "Eve", "email": "eve@example.com"})
    assert resp.status_code == 409
    assert auth_client.delete(f"/api/groups/{group['id']}/participants/{people['Ana']['id']}").status_code == 409


def test_duplicate_email_in_group(auth_client):
    group = _create_group(auth_client)
    _enroll(auth_client, group["id"])
    resp = auth_client.post(f"/api/groups/{group['id']}/participants", json={"name": "Ana 2", "email": "ana@example.com"})
    assert resp.status_code == 400


def test_other_organizers_cannot_see_group(auth_client, app):
    group = _create_group(auth_client)
    auth_client.post("/api/auth/logout")

    other = app.test_client()
    other.post("/api/auth/register", json={"name": "Mallory", "email": "mallory@example.com", "password": "12345678"})
    assert other.get(f"/api/groups/{group['id']}").status_code == 404
    assert other.post(f"/api/groups/{group['id']}/draw").status_code == 404


def test_delete_group(auth_client):
    group = _create_group(auth_client)
    _enroll(auth_client, group["id"])
    assert auth_client.delete(f"/api/groups/{group['id']}").status_code == 204
    assert auth_client.get(f"/api/groups/{group['id']}").status_code == 404


def test_participant_page_and_messages(auth_client, client):
    group = _create_group(auth_client)
    people = _enroll(auth_client, group["id"])
    ana_token = people["Ana"]["access_token"]

    page = client.get(f"/api/participants/{ana_token}").get_json()
    assert page["assignment"] == {"drawn": False, "receiver": None}

    assert client.post(f"/api/participants/{ana_token}/messages", json={"content": "hi"}).status_code == 409

    resp = client.put(f"/api/participants/{people['Ben']['access_token']}/wishlist", json={"wish_list": ["Socks", " ", "Tea"]})
    assert resp.get_json() == {"wish_list": ["Socks", "Tea"]}

    auth_client.post(f"/api/groups/{group['id']}/draw")

    page = client.get(f"/api/participants/{ana_token}").get_json()
    assert page["assignment"]["drawn"] is True
    receiver_name = page["assignment"]["receiver"]["name"]
    assert receiver_name in {"Ben", "Cai"}

    resp = client.post(f"/api/participants/{ana_token}/messages", json={"content": "Any allergies?"})
    assert resp.status_code == 201

    inbox = client.get(f"/api/participants/{people[receiver_name]['access_token']}/messages").get_json()
    assert [m["content"] for m in inbox] == ["Any allergies?"]
    assert "from_participant_id" not in inbox[0]
    assert inbox[0]["read_at"] is not None


def test_participant_manages_own_exclusions(client, auth_client):
    group = _create_group(auth_client)
    people = _enroll(auth_client, group["id"])
    token = people["Cai"]["access_token"]

    resp = client.put(f"/api/participants/{token}/exclusions", json={"exclusions": [people["Ana"]["id"], people["Cai"]["id"], 9999]})
    assert resp.get_json() == {"exclusions": [people["Ana"]["id"]]}

    view = client.get(f"/api/participants/{token}/exclusions").get_json()
    assert view["locked"] is False
    assert {c["name"] for c in view["candidates"]} == {"Ana", "Ben"}


def test_unknown_participant_token(client):
    assert client.get("/api/participants/not-a-token").status_code == 404


def test_resend_email(auth_client, mailer):
    group = _create_group(auth_client)
    people = _enroll(auth_client, group["id"])
    url = f"/api/groups/{group['id']}/participants/{people['Ben']['id']}/resend-email"

    assert auth_client.post(url).status_code == 409

    auth_client.post(f"/api/groups/{group['id']}/draw")
    assert auth_client.post(url).status_code == 200

    mailer.fail_for.add("ben@example.com")
    assert auth_client.post(url).status_code == 502


def test_test_email(auth_client, mailer):
    assert auth_client.post("/api/auth/test-email").status_code == 200
    assert "olivia@example.com" in mailer.recipients()


def test_landing(client):
    body = client.get("/").get_json()
    assert body["service"] == "xbuddy"
    assert body["groups"] == 0


def test_organizer_sees_messages_a_participant_sent(auth_client, client, app):
    group = _create_group(auth_client)
    people = _enroll(auth_client, group["id"])
    auth_client.post(f"/api/groups/{group['id']}/draw")

    ana_token = people["Ana"]["access_token"]
    receiver_name = client.get(f"/api/participants/{ana_token}").get_json()["assignment"]["receiver"]["name"]
    client.post(f"/api/participants/{ana_token}/messages", json={"content": "First"})
    client.post(f"/api/participants/{ana_token}/messages", json={"content": "Second"})

    url = f"/api/groups/{group['id']}/participants/{people['Ana']['id']}/messages"
    sent = auth_client.get(url).get_json()

    assert [m["content"] for m in sent] == ["Second", "First"]
    assert {m["recipient_name"] for m in sent} == {receiver_name}

    auth_client.post("/api/auth/logout")
    assert auth_client.get(url).status_code == 401

    other = app.test_client()
    other.post("/api/auth/register", json={"name": "Mallory", "email": "mallory@example.com", "password": "12345678"})
    assert other.get(url).status_code == 404


def test_complete_group(auth_client):
    group = _create_group(auth_client)
    _enroll(auth_client, group["id"])
    url = f"/api/groups/{group['id']}/complete"

    assert auth_client.post(url).status_code == 409

    auth_client.post(f"/api/groups/{group['id']}/draw")
    resp = auth_client.post(url)
    assert resp.status_code == 200
    assert resp.get_json()["status"] == "completed"

    assert auth_client.post(url).status_code == 409
    assert auth_client.post(f"/api/groups/{group['id']}/draw").status_code == 409
