from __future__ import annotations

import uuid
from datetime import datetime

import pytest

from feedagg import create_app
from feedagg.db import get_session
from feedagg.models import Post


@pytest.fixture()
def client(database_url):
    app = create_app({"TESTING": True, "DATABASE_URL": database_url})
    with app.test_client() as client:
        yield client


def _create_user(client, name="alice"):
    response = client.post("/v1/users", json={"name": name})
    assert response.status_code == 201
    return response.get_json()


def _auth(user):
    return {"Authorization": f"ApiKey {user['api_key']}"}


def _create_feed(client, user, *, name="Example", url="https://example.com/feed.xml"):
    return client.post("/v1/feeds", json={"name": name, "url": url}, headers=_auth(user))


def test_readiness_and_error_endpoints(client):
    assert client.get("/v1/readiness").get_json() == {"status": "ok"}

    response = client.get("/v1/err")
    assert response.status_code == 500
    assert response.get_json() == {"error": "Internal Server Error"}


def test_health_ready_and_metrics(client):
    assert client.get("/health").status_code == 200
    assert client.get("/ready").status_code == 200

    client.get("/v1/readiness")
    response = client.get("/metrics")

    assert response.status_code == 200
    assert b"flask_app_requests_total" in response.data


def test_create_user_returns_api_key(client):
    user = _create_user(client)

    assert user["name"] == "alice"
    assert len(user["api_key"]) == 64
    uuid.UUID(user["id"])


def test_create_user_rejects_bad_json(client):
    response = client.post("/v1/users", data="not json", content_type="application/json")

    assert response.status_code == 400
    assert "error" in response.get_json()


def test_get_current_user_requires_api_key(client):
    user = _create_user(client)

    assert client.get("/v1/users").status_code == 401
    assert client.get("/v1/users", headers={"Authorization": "Bearer nope"}).status_code == 401
    assert client.get("/v1/users", headers={"Authorization": "ApiKey wrong"}).status_code == 401

    response = client.get("/v1/users", headers=_auth(user))
    assert response.status_code == 200
    assert response.get_json()["id"] == user["id"]


def test_create_feed_follows_it_for_creator(client):
    user = _create_user(client)

    response = _create_feed(client, user)

    assert response.status_code == 201
    body = response.get_json()
    assert body["feed"]["url"] == "https://example.com/feed.xml"
    assert body["feed"]["user_id"] == user["id"]
    assert body["feed"]["last_fetched_at"] is None
    assert body["feed_follow"]["feed_id"] == body["feed"]["id"]

    follows = client.get("/v1/feed_follows", headers=_auth(user)).get_json()
    assert [follow["feed_id"] for follow in follows] == [body["feed"]["id"]]


def test_create_feed_rejects_duplicate_url(client):
    user = _create_user(client)
    _create_feed(client, user)

    response = _create_feed(client, user, name="Again")

    assert response.status_code == 409
    assert len(client.get("/v1/feeds").get_json()) == 1


def test_create_feed_validates_url(client):
    user = _create_user(client)

    response = _create_feed(client, user, url="ftp://example.com/feed.xml")

    assert response.status_code == 400


def test_list_feeds_is_public(client):
    user = _create_user(client)
    _create_feed(client, user, name="One", url="https://one.example.com/rss")
    _create_feed(client, user, name="Two", url="https://two.example.com/rss")

    response = client.get("/v1/feeds")

    assert response.status_code == 200
    assert sorted(feed["name"] for feed in response.get_json()) == ["One", "Two"]


def test_follow_lifecycle(client):
    owner = _create_user(client, "owner")
    reader = _create_user(client, "reader")
    feed_id = _create_feed(client, owner).get_json()["feed"]["id"]

    created = client.post("/v1/feed_follows", json={"feed_id": feed_id}, headers=_auth(reader))
    duplicate = client.post("/v1/feed_follows", json={"feed_id": feed_id}, headers=_auth(reader))

    assert created.status_code == 201
    assert duplicate.status_code == 409
    follow_id = created.get_json()["id"]

    assert client.delete(f"/v1/feed_follows/{follow_id}", headers=_auth(owner)).status_code == 404
    assert client.delete(f"/v1/feed_follows/{follow_id}", headers=_auth(reader)).status_code == 204
    assert client.get("/v1/feed_follows", headers=_auth(reader)).get_json() == []


def test_follow_rejects_bad_or_unknown_feed(client):
    user = _create_user(client)

    bad = client.post("/v1/feed_follows", json={"feed_id": "not-a-uuid"}, headers=_auth(user))
    unknown = client.post("/v1/feed_follows", json={"feed_id": str(uuid.uuid4())}, headers=_auth(user))
    bad_path = client.delete("/v1/feed_follows/not-a-uuid", headers=_auth(user))

    assert bad.status_code == 400
    assert unknown.status_code == 404
    assert bad_path.status_code == 400


def test_posts_for_followed_feeds(client, database_url):
    user = _create_user(client)
    feed_id = _create_feed(client, user).get_json()["feed"]["id"]
    session = get_session(database_url)
    try:
        for day in range(1, 4):
            session.add(
                Post(
                    feed_id=feed_id,
                    title=f"Day {day}",
                    url=f"https://example.com/posts/{day}",
                    published_at=datetime(2024, 1, day),
                )
            )
        session.commit()
    finally:
        session.close()

    response = client.get("/v1/posts", headers=_auth(user))
    limited = client.get("/v1/posts?limit=2", headers=_auth(user))
    garbage = client.get("/v1/posts?limit=abc", headers=_auth(user))

    assert response.status_code == 200
    assert [post["title"] for post in response.get_json()] == ["Day 3", "Day 2", "Day 1"]
    assert [post["title"] for post in limited.get_json()] == ["Day 3", "Day 2"]
    assert len(garbage.get_json()) == 3


def test_posts_requires_authentication(client):
    assert client.get("/v1/posts").status_code == 401
