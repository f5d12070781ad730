# tests/v1/test_push_api.py
"""Tests for the Web Push subscription endpoints."""

from fastapi import status

SUBSCRIPTION = {
    "endpoint": "https://push.example/alice",
    "keys": {"p256dh": "BNcRdreALRFXTkOOUHK1EtK2wtaz5Ry4YfYCA", "auth": "tBHItJI5svbpez7KI4CCXg"},
    "expirationTime": None,
}


def test_vapid_public_key(client, mocker) -> None:
    mocker.patch("uthread.services.push.settings.vapid_public_key", "BPublicKey")

    response = client.get("/api/v1/push/vapid-public-key")

    assert response.json() == {"public_key": "BPublicKey"}


def test_subscribe_and_unsubscribe(client, test_user, auth_token) -> None:
    response = client.post("/api/v1/push/subscribe", json={"subscription": SUBSCRIPTION}, headers=auth_token)

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["subscription"]["endpoint"] == SUBSCRIPTION["endpoint"]

    response = client.request(
        "DELETE", "/api/v1/push/unsubscribe", json={"endpoint": SUBSCRIPTION["endpoint"]}, headers=auth_token
    )
    assert response.json()["success"] is True

    response = client.request(
        "DELETE", "/api/v1/push/unsubscribe", json={"endpoint": SUBSCRIPTION["endpoint"]}, headers=auth_token
    )
    assert response.status_code == status.HTTP_404_NOT_FOUND


def test_subscribe_requires_endpoint(client, test_user, auth_token) -> None:
    missing = client.post("/api/v1/push/subscribe", json={}, headers=auth_token)
    no_endpoint = client.post(
        "/api/v1/push/subscribe", json={"subscription": {"keys": SUBSCRIPTION["keys"]}}, headers=auth_token
    )

    assert missing.status_code == status.HTTP_400_BAD_REQUEST
    assert no_endpoint.status_code == status.HTTP_400_BAD_REQUEST


def test_unsubscribe_requires_endpoint(client, test_user, auth_token) -> None:
    response = client.request("DELETE", "/api/v1/push/unsubscribe", json={}, headers=auth_token)

    assert response.status_code == status.HTTP_400_BAD_REQUEST
