"""
Lookup helpers that attach related documents to already-serialized results.

Each helper issues one batched $in query for the whole page of results and
mutates the given dicts in place (returning them for convenience).
"""

from collections import defaultdict
from typing import Dict, List

from bson import ObjectId
from pymongo.database import Database

from database import COMMENTS, LIKES, USERS, to_public


def _user_names(db: Database, user_ids) -> Dict[str, dict]:
    oids = [ObjectId(u) for u in set(user_ids) if u and ObjectId.is_valid(u)]
    if not oids:
        return {}
    cursor = db[USERS].find({"_id": {"$in": oids}}, {"first_name": 1, "last_name": 1})
    return {
        str(u["_id"]): {"id": str(u["_id"]), "first_name": u.get("first_name"), "last_name": u.get("last_name")}
        for u in cursor
    }


def join_post_user(db: Database, docs: List[dict], field: str = "user_id") -> List[dict]:
    """Attach the owner's name as `user` (None if the account is gone)."""
    names = _user_names(db, [d.get(field) for d in docs])
    for d in docs:
        d["user"] = names.get(d.get(field))
    return docs


def join_likes_post(db: Database, posts: List[dict]) -> List[dict]:
    ids = [p["id"] for p in posts]
    grouped = defaultdict(lambda: {"users_id": [], "users": []})
    if ids:
        cursor = db[LIKES].find({"post_id": {"$in": ids}}).sort([("created_at", -1), ("_id", -1)])
        for like in cursor:
            info = grouped[like["post_id"]]
            info["users_id"].append(like["user_id"])
            info["users"].append({"first_name": like.get("first_name"), "last_name": like.get("last_name")})
    for p in posts:
        p["like_info"] = grouped.get(p["id"])
    return posts


def join_comments_post(db: Database, posts: List[dict]) -> List[dict]:
    ids = [p["id"] for p in posts]
    grouped = defaultdict(list)
    if ids:
        cursor = db[COMMENTS].find({"post_id": {"$in": ids}}).sort([("created_at", -1), ("_id", -1)])
        for c in cursor:
            comment = to_public(c)
            comment.pop("updated_at", None)
            grouped[c["post_id"]].append(comment)
    for p in posts:
        p["comments"] = grouped.get(p["id"], [])
    return posts


def join_sent_message_user(db: Database, messages: List[dict]) -> List[dict]:
    return join_post_user(db, messages, field="sender_id")
