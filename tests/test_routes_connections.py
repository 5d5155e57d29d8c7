from __future__ import annotations

from uuid import uuid4

from conftest import INSTANCE_URL, create_connection


def test_requests_without_api_key_are_rejected(api):
    response = api.get("/connections", headers={"X-API-Key": "wrong"})

    assert response.status_code == 401
    body = response.json()
    assert body["code"] == 401
    assert body["message"] == "Invalid or missing API key"
    assert body["correlation_id"] == response.headers["X-Request-Id"]


def test_health_is_public(api):
    response = api.get("/health", headers={"X-API-Key": ""})

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_create_connection_hides_secrets(api):
    created = create_connection(api, instance_url=f"{INSTANCE_URL}/", company_name="Company")

    assert created["instance_url"] == INSTANCE_URL
    assert created["status"] == "active"
    assert created["company_name"] == "Company"
    assert "client_secret" not in created
    assert "password" not in created
    assert "client_secret_enc" not in created


def test_api_version_defaults_from_settings(api):
    created = create_connection(api, api_version=None)

    assert created["api_version"] == "24.200.001"


def test_duplicate_name_conflicts(api):
    create_connection(api)

    response = api.post(
        "/connections",
        json={
            "name": "Revision Two",
            "instance_url": "https://other.example.com",
            "client_id": "x",
            "client_secret": "y",
            "username": "z",
            "password": "w",
        },
    )

    assert response.status_code == 409


def test_instance_url_must_be_absolute(api):
    response = api.post(
        "/connections",
        json={
            "name": "Broken",
            "instance_url": "erp.example.com",
            "client_id": "x",
            "client_secret": "y",
            "username": "z",
            "password": "w",
        },
    )

    assert response.status_code == 422
    assert response.json()["message"] == "Validation error"


def test_token_lifecycle_is_reported(api, fake):
    connection_id = create_connection(api)["id"]

    assert api.get(f"/connections/{connection_id}").json()["token_status"] == "none"

    refreshed = api.post(f"/connections/{connection_id}/token")
    assert refreshed.status_code == 200
    assert refreshed.json()["refreshed"] is True
    assert refreshed.json()["expires_at"] is not None

    listed = api.get("/connections").json()
    assert [item["token_status"] for item in listed] == ["cached"]

    assert api.delete(f"/connections/{connection_id}/token").status_code == 204
    assert api.get(f"/connections/{connection_id}").json()["token_status"] == "none"
    assert len(fake.token_requests) == 1


def test_token_refresh_failure_maps_to_bad_gateway(api, fake):
    connection_id = create_connection(api)["id"]
    fake.token_status = 400

    response = api.post(f"/connections/{connection_id}/token")

    assert response.status_code == 502
    body = response.json()
    assert "Invalid username or password" in body["message"]
    assert body["details"]["error"] == "authentication_failed"
    assert "Connected Application" in body["details"]["description"]


def test_updating_secrets_drops_cached_token(api, fake):
    connection_id = create_connection(api)["id"]
    api.post(f"/connections/{connection_id}/token")

    response = api.patch(f"/connections/{connection_id}", json={"password": "n3w-pass"})

    assert response.status_code == 200
    assert api.get(f"/connections/{connection_id}").json()["token_status"] == "none"

    api.post(f"/connections/{connection_id}/token")
    assert fake.token_requests[-1].content.decode().count("password=n3w-pass") == 1


def test_delete_connection(api):
    connection_id = create_connection(api)["id"]

    assert api.delete(f"/connections/{connection_id}").status_code == 204
    assert api.get(f"/connections/{connection_id}").status_code == 404


def test_unknown_and_malformed_ids(api):
    missing = api.get(f"/connections/{uuid4()}")
    assert missing.status_code == 404
    assert missing.json()["message"] == "Connection not found"

    assert api.get("/connections/not-a-uuid").status_code == 400
