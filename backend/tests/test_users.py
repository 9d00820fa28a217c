# backend/tests/test_users.py
from conftest import TEST_USER


def test_register_returns_id_and_token(client):
    r = client.post("/users", json=TEST_USER)
    assert r.status_code == 201, r.text
    body = r.json()
    assert isinstance(body["id"], int)
    assert body["token"]

def test_register_invalid_input(client):
    r = client.post("/users", json={})
    assert r.status_code == 400
    assert "error" in r.json()

    r2 = client.post("/users", json={"name": "x", "password": "a", "confirm_password": "b"})
    assert r2.status_code == 400
    assert r2.json()["error"] == "Passwords do not match."

def test_register_duplicate_name(client, user):
    r = client.post("/users", json=TEST_USER)
    assert r.status_code == 409
    assert "error" in r.json()

def test_login_and_current_user(client, user):
    r = client.post("/users/login", json={"name": TEST_USER["name"], "password": TEST_USER["password"]})
    assert r.status_code == 200
    token = r.json()["token"]

    me = client.get("/users", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json() == {"id": user["id"], "name": TEST_USER["name"]}

def test_login_bad_credentials(client, user):
    r = client.post("/users/login", json={"name": "", "password": ""})
    assert r.status_code == 401
    assert "error" in r.json()

    r2 = client.post("/users/login", json={"name": TEST_USER["name"], "password": "wrong"})
    assert r2.status_code == 401

def test_current_user_requires_token(client):
    assert client.get("/users").status_code == 401
    r = client.get("/users", headers={"Authorization": "Bearer not-a-token"})
    assert r.status_code == 401
    assert "error" in r.json()

def test_logout_returns_null_token(client, user):
    r = client.post("/users/logout", headers=user["headers"])
    assert r.status_code == 200
    assert r.json()["token"] is None

def test_user_collections_are_private(client, user, other_user):
    client.post("/surveyDesigns", json={"name": "design"}, headers=user["headers"])

    mine = client.get(f"/users/{user['id']}/surveyDesigns", headers=user["headers"])
    assert mine.status_code == 200
    assert [d["name"] for d in mine.json()["surveyDesigns"]] == ["design"]

    for collection in ("surveyDesigns", "publishedSurveys", "visualizations"):
        r = client.get(f"/users/{user['id']}/{collection}", headers=other_user["headers"])
        assert r.status_code == 401
        assert "error" in r.json()

def test_unknown_route_is_json_404(client):
    r = client.get("/nope/nothing")
    assert r.status_code == 404
    assert "does not exist" in r.json()["error"]
