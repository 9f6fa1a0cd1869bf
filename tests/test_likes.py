from bson import ObjectId


class TestToggleLike:

    def test_like_then_unlike(self, client, alice, bob, db, make_post):
        post = make_post(alice)
        url = f"/api/likes/addRemove/{post['id']}"

        added = client.post(url, headers=bob.headers)
        assert added.status_code == 200
        like = added.json()["data"]["like"]
        assert like["user_id"] == bob.id
        assert like["first_name"] == "Bob"
        assert db["like"].count_documents({"post_id": post["id"]}) == 1

        removed = client.post(url, headers=bob.headers)
        assert removed.status_code == 200
        data = removed.json()["data"]
        assert data["removed"] == 1
        assert data["removed_by"]["id"] == bob.id
        assert db["like"].count_documents({"post_id": post["id"]}) == 0

    def test_likes_from_two_users(self, client, alice, bob, make_post):
        post = make_post(alice)
        url = f"/api/likes/addRemove/{post['id']}"
        client.post(url, headers=alice.headers)
        client.post(url, headers=bob.headers)

        like_info = client.get(f"/api/posts/{post['id']}").json()["data"]["like_info"]
        assert like_info["users_id"] == [bob.id, alice.id]
        assert like_info["users"][0] == {"first_name": "Bob", "last_name": "Jones"}

    def test_missing_post(self, client, bob, db):
        response = client.post(f"/api/likes/addRemove/{ObjectId()}", headers=bob.headers)
        assert response.status_code == 404
        assert db["like"].count_documents({}) == 0

    def test_requires_login(self, client, alice, make_post):
        post = make_post(alice)
        assert client.post(f"/api/likes/addRemove/{post['id']}").status_code == 401
