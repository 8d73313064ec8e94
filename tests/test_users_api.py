"""
Account endpoints: registration, sessions and profile changes.
"""
import os

import mongomock
import pytest

from database import USERS

PASSWORD = "secret-password"
AVATAR = ("avatar.png", b"\x89PNG\r\n\x1a\n avatar", "image/png")
COVER = ("cover.jpg", b"\xff\xd8\xff cover", "image/jpeg")


def register(client, username="ana", email=None, files=None, **fields):
    data = {
        "fullName": "Ana Lima",
        "email": email or f"{username}@videotube.dev",
        "username": username,
        "password": PASSWORD,
    }
    data.update(fields)
    return client.post("/users/register", data=data, files=files if files is not None else {"avatar": AVATAR})


def login(client, **credentials):
    credentials.setdefault("password", PASSWORD)
    return client.post("/users/login", json=credentials)


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


def test_register_creates_sanitized_user(client, db, media_store):
    response = register(client, "Ana", files={"avatar": AVATAR, "coverImage": COVER})

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["statusCode"] == 201
    user = body["data"]
    assert user["username"] == "ana"
    assert user["email"] == "ana@videotube.dev"
    assert user["watchHistory"] == []
    assert "passwordHash" not in user
    assert "refreshToken" not in user
    assert user["avatar"]["url"].startswith("/static/images/")
    assert os.path.isfile(media_store.path_for(user["avatar"]["publicId"]))
    assert user["coverImage"]["publicId"].endswith(".jpg")

    stored = db[USERS].find_one({"username": "ana"})
    assert stored["passwordHash"] != PASSWORD


def test_register_duplicate_username_is_case_insensitive(client):
    assert register(client, "ana").status_code == 201

    response = register(client, "ANA", email="other@videotube.dev")

    assert response.status_code == 409
    body = response.json()
    assert body == {
        "statusCode": 409,
        "message": "User with email or username already exists",
        "success": False,
        "errors": [],
    }


def stored_files(media_store):
    return [name for _, _, names in os.walk(media_store.root) for name in names]


def test_register_race_maps_duplicate_key_to_conflict(client, make_user, media_store, monkeypatch):
    make_user("ana")
    # the existence check misses, so only the unique index stops the insert
    monkeypatch.setattr(mongomock.collection.Collection, "find_one", lambda self, *args, **kwargs: None)

    response = register(client, "ana", email="second@videotube.dev")

    assert response.status_code == 409
    assert response.json() == {
        "statusCode": 409,
        "message": "User with email or username already exists",
        "success": False,
        "errors": [],
    }
    assert stored_files(media_store) == []


def test_register_duplicate_email(client):
    register(client, "ana")
    assert register(client, "bruno", email="ANA@videotube.dev").status_code == 409


def test_register_requires_avatar(client, media_store):
    response = register(client, "ana", files={})

    assert response.status_code == 400
    assert response.json()["message"] == "Avatar file is required"


def test_register_requires_all_fields(client):
    response = register(client, "ana", fullName="  ")

    assert response.status_code == 400
    assert response.json()["message"] == "All fields are required"


def test_register_rejects_invalid_email(client, media_store):
    response = register(client, "ana", email="not-an-email")

    assert response.status_code == 400
    assert response.json()["errors"][0]["field"] == "email"
    # the uploaded avatar is discarded again
    assert not os.listdir(os.path.join(media_store.root, "images"))


def test_login_sets_tokens(client, make_user, db):
    make_user("ana")

    response = login(client, username="ANA")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["user"]["username"] == "ana"
    assert "passwordHash" not in data["user"]
    assert data["accessToken"] and data["refreshToken"]
    assert "accessToken" in response.cookies or "accesstoken" in response.headers.get("set-cookie", "").lower()
    assert db[USERS].find_one({"username": "ana"})["refreshToken"] == data["refreshToken"]


def test_login_by_email(client, make_user):
    make_user("ana")
    assert login(client, email="ana@videotube.dev").status_code == 200


@pytest.mark.parametrize("credentials,status", [
    ({}, 400),
    ({"username": "ana", "password": ""}, 400),
    ({"username": "nobody"}, 404),
    ({"username": "ana", "password": "wrong-password"}, 401),
])
def test_login_failures(client, make_user, credentials, status):
    make_user("ana")
    assert login(client, **credentials).status_code == status


def test_me_requires_token(client):
    response = client.get("/users/me")
    assert response.status_code == 401
    assert response.json()["success"] is False

    assert client.get("/users/me", headers=bearer("garbage")).status_code == 401


def test_me_returns_caller(client, make_user, auth_headers):
    user = make_user("ana")

    response = client.get("/users/me", headers=auth_headers(user))

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["id"] == str(user["_id"])
    assert "passwordHash" not in data


def test_logout_twice_succeeds(client, make_user, db):
    make_user("ana")
    access = login(client, username="ana").json()["data"]["accessToken"]

    assert client.post("/users/logout", headers=bearer(access)).status_code == 200
    assert "refreshToken" not in db[USERS].find_one({"username": "ana"})
    assert client.post("/users/logout", headers=bearer(access)).status_code == 200


def test_refresh_rotates_tokens(client, make_user):
    make_user("ana")
    first = login(client, username="ana").json()["data"]["refreshToken"]

    response = client.post("/users/refresh-token", json={"refreshToken": first})
    assert response.status_code == 200
    second = response.json()["data"]["refreshToken"]
    assert second != first

    reused = client.post("/users/refresh-token", json={"refreshToken": first})
    assert reused.status_code == 401

    assert client.post("/users/refresh-token", json={"refreshToken": second}).status_code == 200


def test_refresh_after_logout_fails(client, make_user):
    make_user("ana")
    session = login(client, username="ana").json()["data"]
    client.post("/users/logout", headers=bearer(session["accessToken"]))

    response = client.post("/users/refresh-token", json={"refreshToken": session["refreshToken"]})
    assert response.status_code == 401


def test_refresh_requires_token(client):
    assert client.post("/users/refresh-token").status_code == 401
    assert client.post("/users/refresh-token", json={"refreshToken": "junk"}).status_code == 401


def test_change_password(client, make_user, auth_headers):
    user = make_user("ana")
    headers = auth_headers(user)

    wrong = client.post("/users/change-password", headers=headers,
                        json={"oldPassword": "nope", "newPassword": "new-password"})
    assert wrong.status_code == 401

    missing = client.post("/users/change-password", headers=headers, json={"oldPassword": PASSWORD})
    assert missing.status_code == 400

    ok = client.post("/users/change-password", headers=headers,
                     json={"oldPassword": PASSWORD, "newPassword": "new-password"})
    assert ok.status_code == 200

    assert login(client, username="ana").status_code == 401
    assert login(client, username="ana", password="new-password").status_code == 200


def test_update_account(client, make_user, auth_headers):
    user = make_user("ana")
    make_user("bruno")
    headers = auth_headers(user)

    response = client.patch("/users/me", headers=headers, json={"fullName": "Ana Maria", "username": "AnaM"})
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["fullName"] == "Ana Maria"
    assert data["username"] == "anam"

    assert client.patch("/users/me", headers=headers, json={}).status_code == 400
    assert client.patch("/users/me", headers=headers, json={"username": "bruno"}).status_code == 409
    assert client.patch("/users/me", headers=headers, json={"email": "broken"}).status_code == 400


def test_update_avatar_replaces_old_asset(client, make_user, auth_headers, media_store, db):
    register(client, "ana")
    user = db[USERS].find_one({"username": "ana"})
    old_path = media_store.path_for(user["avatar"]["publicId"])
    assert os.path.isfile(old_path)

    response = client.patch("/users/me/avatar", headers=auth_headers(user),
                            files={"avatar": ("new.png", b"\x89PNG new", "image/png")})

    assert response.status_code == 200
    new_ref = response.json()["data"]["avatar"]
    assert new_ref["publicId"] != user["avatar"]["publicId"]
    assert os.path.isfile(media_store.path_for(new_ref["publicId"]))
    assert not os.path.exists(old_path)


def test_update_avatar_for_vanished_user(client, make_user, auth_headers, media_store, monkeypatch):
    user = make_user("ana")
    update = mongomock.collection.Collection.find_one_and_update

    def delete_then_update(self, filter, *args, **kwargs):
        self.delete_one(filter)
        return update(self, filter, *args, **kwargs)
    monkeypatch.setattr(mongomock.collection.Collection, "find_one_and_update", delete_then_update)

    response = client.patch("/users/me/avatar", headers=auth_headers(user),
                            files={"avatar": ("new.png", b"\x89PNG new", "image/png")})

    assert response.status_code == 404
    assert response.json()["message"] == "User not found"
    assert stored_files(media_store) == []


def test_update_avatar_requires_file(client, make_user, auth_headers):
    response = client.patch("/users/me/avatar", headers=auth_headers(make_user("ana")))
    assert response.status_code == 400
    assert response.json()["message"] == "Avatar file is missing"


def test_update_cover_image(client, make_user, auth_headers):
    user = make_user("ana")
    response = client.patch("/users/me/cover-image", headers=auth_headers(user), files={"coverImage": COVER})

    assert response.status_code == 200
    assert response.json()["data"]["coverImage"]["url"].endswith(".jpg")


def test_channel_profile_endpoint(client, make_user, auth_headers):
    make_user("ana")
    viewer = make_user("bruno")

    response = client.get("/users/channel/Ana", headers=auth_headers(viewer))

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["username"] == "ana"
    assert data["isSubscribed"] is False
    assert client.get("/users/channel/ghost").status_code == 404


def test_optional_auth_ignores_bad_token(client, make_user):
    make_user("ana")
    response = client.get("/users/channel/ana", headers=bearer("garbage"))
    assert response.status_code == 200


def test_unknown_route_uses_error_envelope(client):
    response = client.get("/nope")
    assert response.status_code == 404
    assert response.json()["success"] is False
