"""HTTP surface: envelopes, status codes and the bearer-protected admin routes."""

import logging

import pytest


POST_BODY = "Long enough body for a post."


def _post_payload(category_id, tag_ids=(), **overrides):
    payload = {
        "title": "Hello",
        "content": POST_BODY,
        "summary": "hi",
        "status": 1,
        "category_id": category_id,
        "tag_ids": list(tag_ids),
    }
    payload.update(overrides)
    return payload


def test_signup_and_login(client):
    resp = client.post("/api/v1/signup", json={"username": "alice", "password": "secret123"})
    assert resp.status_code == 200
    assert resp.get_json() == {"code": 200, "message": "success", "data": None}

    resp = client.post("/api/v1/login", json={"username": "alice", "password": "secret123"})
    assert resp.status_code == 200
    assert resp.get_json()["data"]["token"]


def test_signup_errors(client):
    client.post("/api/v1/signup", json={"username": "alice", "password": "secret123"})

    resp = client.post("/api/v1/signup", json={"username": "alice", "password": "secret123"})
    assert resp.status_code == 409
    assert resp.get_json() == {"code": 409, "message": "username taken", "data": None}

    resp = client.post("/api/v1/signup", json={"username": "bob", "password": "secret123"})
    assert resp.status_code == 400

    resp = client.post("/api/v1/signup", data="not json", content_type="application/json")
    assert resp.status_code == 400


def test_login_failures_look_the_same(client):
    client.post("/api/v1/signup", json={"username": "alice", "password": "secret123"})

    wrong_password = client.post("/api/v1/login", json={"username": "alice", "password": "nope-nope"})
    unknown_user = client.post("/api/v1/login", json={"username": "nobody", "password": "secret123"})

    assert wrong_password.status_code == unknown_user.status_code == 401
    assert wrong_password.get_json() == unknown_user.get_json()


def test_me_returns_profile(client, auth_headers):
    resp = client.get("/api/v1/me", headers=auth_headers)

    assert resp.status_code == 200
    data = resp.get_json()["data"]
    assert data["username"] == "alice"
    assert data["role"] == "user"


@pytest.mark.parametrize(
    "headers, message",
    [
        ({}, "malformed header"),
        ({"Authorization": "Token abc"}, "malformed header"),
        ({"Authorization": "Bearer not-a-token"}, "invalid token"),
    ],
)
def test_protected_routes_reject_bad_credentials(client, headers, message):
    for method, url in (
        ("get", "/api/v1/me"),
        ("get", "/api/v1/admin/categories"),
        ("post", "/api/v1/admin/tags"),
        ("get", "/api/v1/admin/posts"),
    ):
        resp = getattr(client, method)(url, headers=headers)
        assert resp.status_code == 401
        assert resp.get_json() == {"code": 401, "message": message, "data": None}


def test_publishing_flow(client, auth_headers):
    resp = client.post("/api/v1/admin/categories", json={"name": "Go"}, headers=auth_headers)
    assert resp.status_code == 200
    category_id = resp.get_json()["data"]["id"]

    tag_ids = []
    for name in ("gin", "api"):
        resp = client.post("/api/v1/admin/tags", json={"name": name}, headers=auth_headers)
        tag_ids.append(resp.get_json()["data"]["id"])

    # a user_id in the body is ignored; the author comes from the token
    resp = client.post(
        "/api/v1/admin/posts",
        json=_post_payload(category_id, tag_ids, user_id=99),
        headers=auth_headers,
    )
    assert resp.status_code == 200
    post = resp.get_json()["data"]
    assert post["user"]["username"] == "alice"
    assert post["user_id"] != 99
    assert [tag["name"] for tag in post["tags"]] == ["api", "gin"]

    resp = client.get("/api/v1/posts")
    assert resp.status_code == 200
    data = resp.get_json()["data"]
    assert data["total_count"] == 1
    assert data["posts"][0]["id"] == post["id"]

    resp = client.get(f"/api/v1/posts/{post['id']}")
    assert resp.get_json()["data"]["category"] == {"id": category_id, "name": "Go"}

    resp = client.put(
        f"/api/v1/admin/posts/{post['id']}",
        json=_post_payload(category_id, tag_ids[:1], title="Hello again"),
        headers=auth_headers,
    )
    assert resp.status_code == 200
    assert resp.get_json()["data"]["title"] == "Hello again"
    assert [tag["id"] for tag in resp.get_json()["data"]["tags"]] == tag_ids[:1]

    resp = client.delete(f"/api/v1/admin/categories/{category_id}", headers=auth_headers)
    assert resp.status_code == 409
    assert resp.get_json()["message"] == "category in use"

    resp = client.delete(f"/api/v1/admin/posts/{post['id']}", headers=auth_headers)
    assert resp.status_code == 200

    resp = client.get(f"/api/v1/posts/{post['id']}")
    assert resp.status_code == 404
    assert resp.get_json()["message"] == "post not found"

    resp = client.delete(f"/api/v1/admin/categories/{category_id}", headers=auth_headers)
    assert resp.status_code == 200


def test_post_references_are_checked(client, auth_headers):
    resp = client.post("/api/v1/admin/categories", json={"name": "Go"}, headers=auth_headers)
    category_id = resp.get_json()["data"]["id"]

    resp = client.post("/api/v1/admin/posts", json=_post_payload(999), headers=auth_headers)
    assert resp.status_code == 400
    assert resp.get_json()["message"] == "invalid category"

    resp = client.post("/api/v1/admin/posts", json=_post_payload(category_id, [999]), headers=auth_headers)
    assert resp.status_code == 400
    assert resp.get_json()["message"] == "invalid tag"

    resp = client.get("/api/v1/posts")
    assert resp.get_json()["data"]["total_count"] == 0


@pytest.mark.parametrize(
    "overrides",
    [
        {"title": "H"},
        {"content": "too short"},
        {"status": 2},
        {"status": "1"},
        {"tag_ids": "1,2"},
    ],
)
def test_post_body_validation(client, auth_headers, overrides):
    resp = client.post("/api/v1/admin/categories", json={"name": "Go"}, headers=auth_headers)
    category_id = resp.get_json()["data"]["id"]

    resp = client.post("/api/v1/admin/posts", json=_post_payload(category_id, **overrides), headers=auth_headers)

    assert resp.status_code == 400
    assert resp.get_json()["code"] == 400


def test_catalog_name_conflicts(client, auth_headers):
    client.post("/api/v1/admin/tags", json={"name": "api"}, headers=auth_headers)

    resp = client.post("/api/v1/admin/tags", json={"name": " api "}, headers=auth_headers)
    assert resp.status_code == 409
    assert resp.get_json()["message"] == "tag name already exists"

    resp = client.put("/api/v1/admin/tags/999", json={"name": "web"}, headers=auth_headers)
    assert resp.status_code == 404


def test_paging_parameters(client, auth_headers):
    resp = client.post("/api/v1/admin/categories", json={"name": "Go"}, headers=auth_headers)
    category_id = resp.get_json()["data"]["id"]
    for n in range(3):
        client.post("/api/v1/admin/posts", json=_post_payload(category_id, title=f"Post {n}"), headers=auth_headers)

    resp = client.get("/api/v1/posts?page=2&pageSize=2")
    data = resp.get_json()["data"]
    assert data["total_count"] == 3
    assert len(data["posts"]) == 1

    resp = client.get("/api/v1/posts?page=abc")
    assert resp.status_code == 400


def test_unknown_route_uses_envelope(client):
    resp = client.get("/api/v1/nowhere")

    assert resp.status_code == 404
    assert resp.get_json() == {"code": 404, "message": "Not Found", "data": None}


def test_out_of_range_ids_over_http(client, auth_headers):
    huge = 2**64
    resp = client.post("/api/v1/admin/categories", json={"name": "Go"}, headers=auth_headers)
    category_id = resp.get_json()["data"]["id"]

    resp = client.get(f"/api/v1/posts/{huge}")
    assert resp.status_code == 404
    assert resp.get_json()["message"] == "post not found"

    resp = client.put(f"/api/v1/admin/categories/{huge}", json={"name": "Rust"}, headers=auth_headers)
    assert resp.status_code == 404

    resp = client.get(f"/api/v1/posts?page={huge}")
    assert resp.status_code == 200
    assert resp.get_json()["data"]["posts"] == []

    for payload in (_post_payload(huge), _post_payload(category_id, [huge])):
        resp = client.post("/api/v1/admin/posts", json=payload, headers=auth_headers)
        assert resp.status_code == 400


def test_tag_id_list_is_capped(client, auth_headers):
    resp = client.post("/api/v1/admin/categories", json={"name": "Go"}, headers=auth_headers)
    category_id = resp.get_json()["data"]["id"]

    resp = client.post(
        "/api/v1/admin/posts",
        json=_post_payload(category_id, range(1, 40000)),
        headers=auth_headers,
    )

    assert resp.status_code == 400
    assert "tag_ids" in resp.get_json()["message"]


@pytest.mark.parametrize("kind", ["categories", "tags"])
def test_catalog_names_need_two_characters(client, auth_headers, kind):
    resp = client.post(f"/api/v1/admin/{kind}", json={"name": "x"}, headers=auth_headers)

    assert resp.status_code == 400


def test_requests_are_access_logged(client, caplog):
    caplog.set_level(logging.INFO, logger="pressroom.access")

    client.get("/api/v1/posts?page=1")
    client.get("/api/v1/posts/99")

    messages = [record.getMessage() for record in caplog.records if record.name == "pressroom.access"]
    assert any(message.startswith("GET /api/v1/posts?page=1 200 ") for message in messages)
    assert any(message.startswith("GET /api/v1/posts/99 404 ") for message in messages)
