from datetime import datetime, timedelta, timezone

from bson import ObjectId

from database import as_datetime, create_document


def today():
    return datetime.now(timezone.utc).date()


def ad_payload(title="Bike for sale", start=None, end=None):
    start = start or today() - timedelta(days=5)
    end = end or today() + timedelta(days=5)
    return {
        "title": title,
        "body": "Barely used",
        "image": "https://img.example/bike.png",
        "price": 120.0,
        "duration": (end - start).days,
        "start_date": start.isoformat(),
        "end_date": end.isoformat(),
    }


class TestAds:

    def test_add_ad(self, client, alice):
        response = client.post("/api/ads", headers=alice.headers, json=ad_payload())
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["user_id"] == alice.id
        assert data["start_date"].startswith((today() - timedelta(days=5)).isoformat())

    def test_duplicate_title_for_same_user(self, client, alice, bob):
        client.post("/api/ads", headers=alice.headers, json=ad_payload())
        assert client.post("/api/ads", headers=alice.headers, json=ad_payload()).status_code == 409
        # another user may reuse the title
        assert client.post("/api/ads", headers=bob.headers, json=ad_payload()).status_code == 200

    def test_end_before_start(self, client, alice):
        payload = ad_payload(start=today(), end=today() - timedelta(days=1))
        assert client.post("/api/ads", headers=alice.headers, json=payload).status_code == 422

    def test_lists_only_running_ads(self, client, alice, db):
        client.post("/api/ads", headers=alice.headers, json=ad_payload("running"))
        create_document(db, "ad", {
            "title": "expired",
            "body": "old",
            "image": "x",
            "price": 1.0,
            "duration": 1,
            "user_id": alice.id,
            "start_date": as_datetime(today() - timedelta(days=10)),
            "end_date": as_datetime(today() - timedelta(days=1)),
        })
        client.post("/api/ads", headers=alice.headers, json=ad_payload(
            "upcoming", start=today() + timedelta(days=2), end=today() + timedelta(days=4)))

        response = client.get("/api/ads")
        assert response.status_code == 200
        data = response.json()["data"]
        assert [a["title"] for a in data["ads"]] == ["running"]
        assert data["count"] == 1
        assert data["ads"][0]["user"]["first_name"] == "Alice"

    def test_ad_running_today_only(self, client, alice):
        client.post("/api/ads", headers=alice.headers, json=ad_payload("today", start=today(), end=today()))
        assert client.get("/api/ads").json()["data"]["count"] == 1

    def test_pagination(self, client, alice):
        for i in range(3):
            client.post("/api/ads", headers=alice.headers, json=ad_payload(f"ad {i}"))
        data = client.get("/api/ads", params={"limit": 2, "page": 2}).json()["data"]
        assert len(data["ads"]) == 1
        assert data["count"] == 3


class TestDeleteAd:

    def test_owner_deletes(self, client, alice, db):
        ad = client.post("/api/ads", headers=alice.headers, json=ad_payload()).json()["data"]
        assert client.delete(f"/api/ads/{ad['id']}", headers=alice.headers).status_code == 200
        assert db["ad"].count_documents({}) == 0

    def test_other_user_denied(self, client, alice, bob):
        ad = client.post("/api/ads", headers=alice.headers, json=ad_payload()).json()["data"]
        assert client.delete(f"/api/ads/{ad['id']}", headers=bob.headers).status_code == 403

    def test_missing(self, client, alice):
        assert client.delete(f"/api/ads/{ObjectId()}", headers=alice.headers).status_code == 404


class TestPaymentInit:

    def test_returns_client_secret(self, client, alice, gateway):
        response = client.post("/api/ads/paymentInit", headers=alice.headers, json={"price": 1500, "currency": "usd"})
        assert response.status_code == 200
        assert response.json()["data"] == {"client_secret": "pi_123_secret_456"}
        assert gateway.calls == [(1500, "usd")]

    def test_provider_failure(self, client, alice, gateway):
        gateway.fail = True
        response = client.post("/api/ads/paymentInit", headers=alice.headers, json={"price": 1500, "currency": "usd"})
        assert response.status_code == 500
        body = response.json()
        assert body["customMessage"] == "Payment initiation failed"
        assert "card declined" not in response.text

    def test_invalid_amount(self, client, alice, gateway):
        response = client.post("/api/ads/paymentInit", headers=alice.headers, json={"price": 0, "currency": "usd"})
        assert response.status_code == 422
        assert gateway.calls == []

    def test_requires_login(self, client):
        assert client.post("/api/ads/paymentInit", json={"price": 10, "currency": "usd"}).status_code == 401
