import pytest
from bson import ObjectId

from errors import InvalidData, NotFound
from messages import save_message


class TestSaveMessage:

    def test_private_message(self, db, alice, bob):
        saved = save_message(db, alice.id, "hi", receiver_id=bob.id)
        assert saved["sender_id"] == alice.id
        assert saved["receiver_id"] == bob.id
        assert saved["is_public"] is False
        assert db["message"].count_documents({}) == 1

    def test_public_message_drops_receiver(self, db, alice, bob):
        saved = save_message(db, alice.id, "hello all", is_public=True, receiver_id=bob.id)
        assert saved["receiver_id"] is None

    def test_private_message_needs_receiver(self, db, alice):
        with pytest.raises(InvalidData):
            save_message(db, alice.id, "hi")

    def test_unknown_receiver(self, db, alice):
        with pytest.raises(NotFound):
            save_message(db, alice.id, "hi", receiver_id=str(ObjectId()))


class TestMessageRoutes:

    def test_add_message(self, client, alice, bob):
        response = client.post(f"/api/messages/addMessage/{bob.id}", headers=alice.headers, json={"message": "hey"})
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["receiver_id"] == bob.id
        assert data["sender_id"] == alice.id

    def test_add_message_to_unknown_user(self, client, alice):
        response = client.post(f"/api/messages/addMessage/{ObjectId()}", headers=alice.headers, json={"message": "hey"})
        assert response.status_code == 404

    def test_add_empty_message(self, client, alice, bob):
        response = client.post(f"/api/messages/addMessage/{bob.id}", headers=alice.headers, json={"message": ""})
        assert response.status_code == 422

    def test_inbox_holds_sent_and_received(self, client, db, alice, bob, admin):
        save_message(db, alice.id, "one", receiver_id=bob.id)
        save_message(db, bob.id, "two", receiver_id=alice.id)
        save_message(db, admin.id, "not for alice", receiver_id=bob.id)

        messages = client.get("/api/messages", headers=alice.headers).json()["data"]
        assert [m["message"] for m in messages] == ["one", "two"]
        assert messages[1]["user"] == {"id": bob.id, "first_name": "Bob", "last_name": "Jones"}

    def test_private_conversation(self, client, db, alice, bob, admin):
        save_message(db, alice.id, "one", receiver_id=bob.id)
        save_message(db, admin.id, "other thread", receiver_id=alice.id)
        save_message(db, bob.id, "two", receiver_id=alice.id)
        save_message(db, alice.id, "broadcast", is_public=True)

        response = client.get(f"/api/messages/private/{bob.id}", headers=alice.headers)
        assert response.status_code == 200
        assert [m["message"] for m in response.json()["data"]] == ["one", "two"]

    def test_empty_inbox(self, client, alice):
        response = client.get("/api/messages", headers=alice.headers)
        assert response.status_code == 200
        assert response.json()["data"] == []
