# flake8: noqa
from datetime import datetime, timedelta, timezone

import pytest

from kitchn import models


@pytest.fixture
def kitchen(client, make_user):
    chef = make_user()
    cook = make_user(email="cook@example.com", restaurant_name="")
    return chef, cook


def invite(client, chef, email="cook@example.com", role="commis"):
    return client.post(
        "/api/invitations", json={"email": email, "role": role}, headers=chef.headers
    )


def join(client, chef, cook, role="commis"):
    token = invite(client, chef, cook.email, role).json()["token"]
    res = client.post("/api/invitations/accept", json={"token": token}, headers=cook.headers)
    assert res.status_code == 200, res.text
    return res.json()


def test_invitation_round_trip(client, kitchen):
    chef, cook = kitchen
    res = invite(client, chef)
    assert res.status_code == 201
    invitation = res.json()
    assert invitation["invited_user_id"] == cook.id
    assert len(invitation["token"]) == 64

    pending = client.get("/api/invitations/pending", headers=cook.headers).json()
    assert pending["id"] == invitation["id"]

    res = client.post(
        "/api/invitations/accept", json={"token": invitation["token"]}, headers=cook.headers
    )
    assert res.status_code == 200
    profile = res.json()
    chef_profile = client.get("/auth/me", headers=chef.headers).json()
    assert profile["restaurant_id"] == chef_profile["restaurant_id"]
    assert profile["restaurant_role"] == "commis"
    assert profile["establishment"] == "Chez Test"

    assert client.get("/api/invitations/pending", headers=cook.headers).json() is None
    team = client.get("/api/team", headers=chef.headers).json()
    assert {m["email"] for m in team} == {"chef@example.com", "cook@example.com"}


def test_invitation_error_codes(client, kitchen, make_user):
    chef, cook = kitchen
    make_user(email="rival@example.com", restaurant_name="Chez Rival")

    res = invite(client, chef, email="ghost@example.com")
    assert res.status_code == 404
    assert res.json()["code"] == "NO_ACCOUNT"

    res = invite(client, chef, email="rival@example.com")
    assert res.status_code == 400
    assert res.json()["code"] == "ALREADY_IN_RESTAURANT"

    assert invite(client, chef).status_code == 201
    res = invite(client, chef)
    assert res.status_code == 400
    assert res.json()["code"] == "ALREADY_PENDING"

    assert invite(client, chef, role="patron").status_code == 400


def test_only_managers_invite(client, kitchen, make_user):
    chef, cook = kitchen
    join(client, chef, cook)
    make_user(email="third@example.com", restaurant_name="")

    res = invite(client, cook, email="third@example.com")
    assert res.status_code == 403


def test_accept_checks_recipient_and_expiry(client, kitchen, make_user, db):
    chef, cook = kitchen
    other = make_user(email="other@example.com", restaurant_name="")
    invitation = invite(client, chef).json()

    res = client.post(
        "/api/invitations/accept", json={"token": invitation["token"]}, headers=other.headers
    )
    assert res.status_code == 403

    row = db.get(models.Invitation, invitation["id"])
    row.expires_at = datetime.now(timezone.utc) - timedelta(days=1)
    db.commit()
    res = client.post(
        "/api/invitations/accept", json={"token": invitation["token"]}, headers=cook.headers
    )
    assert res.status_code == 400
    assert client.get("/api/invitations/pending", headers=cook.headers).json() is None

    res = client.post("/api/invitations/accept", json={"token": "x" * 64}, headers=cook.headers)
    assert res.status_code == 404


def test_revoke_invitation(client, kitchen):
    chef, cook = kitchen
    invitation = invite(client, chef).json()
    res = client.delete(f"/api/invitations/{invitation['id']}", headers=chef.headers)
    assert res.status_code == 200
    assert client.get("/api/invitations/pending", headers=cook.headers).json() is None


def test_team_member_sees_restaurant_recipes(client, kitchen):
    chef, cook = kitchen
    body = {"title": "Velouté", "sections": [{"local_id": "s"}], "section_ingredients": {}}
    client.post("/api/recipes/form", json=body, headers=chef.headers)

    assert client.get("/api/recipes", headers=cook.headers).json() == []
    join(client, chef, cook)
    assert [r["title"] for r in client.get("/api/recipes", headers=cook.headers).json()] == [
        "Velouté"
    ]


def test_set_role_and_detach(client, kitchen, db):
    chef, cook = kitchen
    join(client, chef, cook)
    group = client.post("/api/groups", json={"name": "Brigade"}, headers=chef.headers).json()
    client.post(
        f"/api/groups/{group['id']}/members", json={"user_id": cook.id}, headers=chef.headers
    )

    res = client.put(
        f"/api/team/{cook.id}/role", json={"restaurant_role": "second"}, headers=chef.headers
    )
    assert res.status_code == 200
    assert res.json()["restaurant_role"] == "second"

    res = client.delete(f"/api/team/{cook.id}", headers=chef.headers)
    assert res.status_code == 200
    me = client.get("/auth/me", headers=cook.headers).json()
    assert me["restaurant_id"] is None
    assert db.query(models.GroupMember).filter(models.GroupMember.user_id == cook.id).count() == 0

    res = client.delete(f"/api/team/{chef.id}", headers=chef.headers)
    assert res.status_code == 400


def test_attach_user_by_email(client, kitchen, make_user):
    chef, cook = kitchen
    res = client.post(
        "/api/team/attach",
        json={"email": "cook@example.com", "restaurant_role": "stagiaire"},
        headers=chef.headers,
    )
    assert res.status_code == 200
    assert res.json()["restaurant_role"] == "stagiaire"

    rival = make_user(email="rival@example.com", restaurant_name="Chez Rival")
    res = client.put(
        f"/api/team/{rival.id}/role", json={"restaurant_role": "commis"}, headers=chef.headers
    )
    assert res.status_code == 403
