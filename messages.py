from typing import Optional

from pymongo.database import Database

from database import MESSAGES, USERS, create_document, to_object_id, to_public
from errors import InvalidData, NotFound
from permissions import canonical_id
from schemas import Message


def save_message(db: Database, sender_id: str, text: str, is_public: bool = False,
                 receiver_id: Optional[str] = None) -> dict:
    """Persist a message; used by both the HTTP route and the socket handler."""
    if is_public:
        receiver_id = None
    else:
        if not receiver_id:
            raise InvalidData("A private message needs a receiver.")
        if not db[USERS].find_one({"_id": to_object_id(receiver_id)}):
            raise NotFound("Receiver not found.")

    message = Message(
        sender_id=canonical_id(sender_id),
        receiver_id=canonical_id(receiver_id),
        message=text,
        is_public=is_public,
    )
    return to_public(create_document(db, MESSAGES, message))
