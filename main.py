import logging
import re
import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pymongo import ReturnDocument
from pymongo.database import Database
from starlette.requests import HTTPConnection

from auth import Caller, create_access_token, get_current_user, hash_password, verify_password
from config import Settings, configure_logging, get_settings, load_settings
from database import (
    ADS, COMMENTS, LIKES, MESSAGES, POSTS, TAGS, USERS,
    as_datetime, connect, create_document, get_by_id, get_db, to_object_id, to_public, utcnow,
)
from errors import AlreadyExists, InvalidData, PermissionDenied, ServiceError, install_error_handlers, success
from joins import join_comments_post, join_likes_post, join_post_user, join_sent_message_user
from messages import save_message
from payments import PaymentError, StripeGateway
from permissions import Access, authorize, ensure_found
from realtime import ConnectionManager, chat_socket
from schemas import (
    Ad, AdCreate, Comment, CommentAuthor, CommentCreate, CommentUpdate, Like, LoginRequest,
    MessageCreate, PaymentInitRequest, Post, PostCreate, PostUpdate, RegisterRequest, Tag,
    TagWrite, User, UserCreate, UserUpdate,
)

logger = logging.getLogger(__name__)

RECENT_FIRST = [("created_at", -1), ("_id", -1)]
OLDEST_FIRST = [("created_at", 1), ("_id", 1)]
MAX_PAGE_SIZE = 100
MAX_PAGE = 100_000

site = APIRouter()
router = APIRouter(prefix="/api")


# Helpers

def paginate(cursor, limit: Optional[int], page: Optional[int]):
    """Apply skip/limit only when both limit and page were supplied."""
    if limit is not None and page is not None:
        cursor = cursor.skip((page - 1) * limit).limit(limit)
    return cursor


def get_payment_gateway(conn: HTTPConnection) -> StripeGateway:
    return conn.app.state.payment_gateway


def _exact_name(name: str) -> dict:
    return {"$regex": f"^{re.escape(name)}$", "$options": "i"}


def _contains(text: str) -> dict:
    return {"$regex": re.escape(text), "$options": "i"}


def tag_filter(tags: List[str], mode: str) -> dict:
    # whole name, any case
    clauses = [{"tags.name": _exact_name(t)} for t in tags]
    if len(clauses) == 1:
        return clauses[0]
    return {"$or": clauses} if mode == "any" else {"$and": clauses}


def _today() -> datetime:
    return as_datetime(utcnow().date())


# ------------------- Basic -------------------
@site.get("/")
def read_root(settings: Settings = Depends(get_settings)):
    return {"message": f"Welcome to the {settings.environment} environment of {settings.app_name}"}


# ------------------- Auth Endpoints -------------------
@router.post("/auth/register")
def register(req: RegisterRequest, db: Database = Depends(get_db)):
    if db[USERS].find_one({"email": str(req.email)}):
        raise AlreadyExists("Email already registered.")
    user = User(
        first_name=req.first_name,
        last_name=req.last_name,
        email=req.email,
        password_hash=hash_password(req.password),
        image=req.image,
        gender=req.gender,
        birth_date=as_datetime(req.birth_date),
    )
    doc = create_document(db, USERS, user)
    logger.info("Registered user %s", doc["_id"])
    return success(to_public(doc), "User registered successfully.")


@router.post("/auth/login")
def login(req: LoginRequest, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    user = ensure_found(db[USERS].find_one({"email": str(req.email)}), "User not found.")
    if not verify_password(req.password, user.get("password_hash", "")):
        raise InvalidData("Password is not valid!")
    token = create_access_token(user, settings)
    return success({"user": to_public(user), "token": token}, "Logged in successfully.")


# ------------------- Users -------------------
@router.get("/users")
def get_all_users(db: Database = Depends(get_db)):
    users = [to_public(u) for u in db[USERS].find({}).sort(RECENT_FIRST)]
    return success({"users": users, "count": len(users)})


@router.get("/users/{user_id}")
def get_single_user(user_id: str, db: Database = Depends(get_db)):
    user = ensure_found(get_by_id(db, USERS, user_id), "User not found.")
    return success(to_public(user), "User retrieved successfully")


@router.post("/users")
def add_user(body: UserCreate, caller: Caller = Depends(get_current_user), db: Database = Depends(get_db)):
    if not caller.is_admin:
        raise PermissionDenied("Only administrators can add users.")
    if db[USERS].find_one({"email": str(body.email)}):
        raise AlreadyExists("Email already registered.")
    user = User(
        first_name=body.first_name,
        last_name=body.last_name,
        email=body.email,
        password_hash=hash_password(body.password),
        image=body.image,
        role=body.role,
        gender=body.gender,
        birth_date=as_datetime(body.birth_date),
    )
    doc = create_document(db, USERS, user)
    return success(to_public(doc), "User added successfully")


@router.put("/users/{user_id}")
def update_user(user_id: str, body: UserUpdate, caller: Caller = Depends(get_current_user),
                db: Database = Depends(get_db)):
    user = ensure_found(get_by_id(db, USERS, user_id), "User not found.")
    access = authorize(caller, user["_id"], "You don't have permission to change another user!")

    updates = body.model_dump(exclude_none=True)
    role = updates.pop("role", None)
    if role is not None and access is Access.ADMIN:
        updates["role"] = role
    if "password" in updates:
        updates["password_hash"] = hash_password(updates.pop("password"))
    if "birth_date" in updates:
        updates["birth_date"] = as_datetime(updates["birth_date"])
    updates["updated_at"] = utcnow()

    updated = db[USERS].find_one_and_update(
        {"_id": user["_id"]},
        {"$set": updates},
        projection={"password_hash": 0},
        return_document=ReturnDocument.AFTER,
    )
    return success(to_public(ensure_found(updated, "User not found.")), "User information updated successfully.")


@router.delete("/users/{user_id}")
def delete_user(user_id: str, caller: Caller = Depends(get_current_user), db: Database = Depends(get_db)):
    user = ensure_found(get_by_id(db, USERS, user_id), "User doesn't exist.")
    authorize(caller, user["_id"], "You don't have permission to delete user.")
    db[USERS].delete_one({"_id": user["_id"]})
    logger.info("User %s deleted by %s", user_id, caller.id)
    return success({"id": user_id}, "User deleted successfully.")


# ------------------- Posts -------------------
@router.get("/posts/all")
def get_all_posts(
    public: Optional[int] = Query(None),
    limit: Optional[int] = Query(None, ge=1, le=MAX_PAGE_SIZE),
    page: Optional[int] = Query(None, ge=1, le=MAX_PAGE),
    db: Database = Depends(get_db),
):
    query = {}
    if public is not None:
        query["is_public"] = bool(public)

    count = db[POSTS].count_documents(query)
    cursor = paginate(db[POSTS].find(query).sort(RECENT_FIRST), limit, page)
    posts = [to_public(p) for p in cursor]
    join_likes_post(db, posts)
    join_post_user(db, posts)
    custom = None if posts else "No posts match the specified criteria"
    return success({"posts": posts, "count": count}, custom)


@router.get("/posts/search")
def search_post(search_query: Optional[str] = Query(None, alias="searchQuery"), db: Database = Depends(get_db)):
    if not search_query or not search_query.strip():
        raise InvalidData("Search term is missing or empty")

    pattern = _contains(search_query.strip())
    cursor = db[POSTS].find({"$or": [{"title": pattern}, {"body": pattern}]}).sort(RECENT_FIRST)
    posts = [to_public(p) for p in cursor]
    join_post_user(db, posts)
    join_likes_post(db, posts)
    for p in posts:
        p.pop("user_id", None)
    return success(posts, "Posts retrieved successfully" if posts else "No posts found")


@router.get("/posts/filter")
def filter_posts(
    tags: List[str] = Query(...),
    match: Optional[Literal["any", "all"]] = Query(None),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    names = list(dict.fromkeys(t.strip() for t in tags if t and t.strip()))
    if not names:
        raise InvalidData("At least one tag is required.")

    query = tag_filter(names, match or settings.tag_filter_mode)
    posts = [to_public(p) for p in db[POSTS].find(query).sort(RECENT_FIRST)]
    join_post_user(db, posts)
    join_likes_post(db, posts)
    return success({"posts": posts}, "Posts filtered successfully." if posts else "No posts found.")


@router.get("/posts/user/{user_id}")
def user_posts(user_id: str, db: Database = Depends(get_db)):
    to_object_id(user_id)
    posts = [to_public(p) for p in db[POSTS].find({"user_id": user_id}).sort(RECENT_FIRST)]
    join_likes_post(db, posts)
    return success(posts, f"User posts fetched successfully for user with ID {user_id}")


@router.get("/posts/{post_id}")
def get_single_post(post_id: str, db: Database = Depends(get_db)):
    post = to_public(ensure_found(get_by_id(db, POSTS, post_id), "Post not found"))
    join_post_user(db, [post])
    join_comments_post(db, [post])
    join_likes_post(db, [post])
    return success(post, "Post retrieved successfully")


@router.post("/posts/add")
def add_post(body: PostCreate, caller: Caller = Depends(get_current_user), db: Database = Depends(get_db)):
    post = Post(**body.model_dump(), user_id=caller.id)
    doc = create_document(db, POSTS, post)
    return success(to_public(doc), "Post added successfully")


@router.put("/posts/{post_id}")
def update_post(post_id: str, body: PostUpdate, caller: Caller = Depends(get_current_user),
                db: Database = Depends(get_db)):
    post = ensure_found(get_by_id(db, POSTS, post_id), "Post not found.")
    authorize(caller, post["user_id"], "You don't have permission to change other users' posts.")

    updates = body.model_dump(exclude_none=True)
    if not updates:
        raise InvalidData("Nothing to update.")
    updates["updated_at"] = utcnow()
    updated = db[POSTS].find_one_and_update(
        {"_id": post["_id"]}, {"$set": updates}, return_document=ReturnDocument.AFTER
    )
    return success(to_public(ensure_found(updated, "Post not found.")), "Post updated successfully.")


@router.delete("/posts/{post_id}")
def delete_post(post_id: str, caller: Caller = Depends(get_current_user), db: Database = Depends(get_db)):
    post = ensure_found(get_by_id(db, POSTS, post_id), "Post not found.")
    authorize(caller, post["user_id"], "You don't have permission to delete other users' posts.")
    db[POSTS].delete_one({"_id": post["_id"]})
    return success({"id": post_id}, "Post deleted successfully")


# ------------------- Comments -------------------
@router.get("/comments/all/{post_id}")
def get_all_comments_for_post(post_id: str, db: Database = Depends(get_db)):
    to_object_id(post_id)
    comments = [to_public(c) for c in db[COMMENTS].find({"post_id": post_id}).sort(RECENT_FIRST)]
    custom = "Comments for the post retrieved successfully." if comments else "No comments found for this post."
    return success({"count": len(comments), "comments": comments}, custom)


@router.get("/comments/{comment_id}")
def get_single_comment(comment_id: str, db: Database = Depends(get_db)):
    comment = ensure_found(get_by_id(db, COMMENTS, comment_id), "Comment not found")
    return success(to_public(comment), "Comment retrieved successfully")


@router.post("/comments")
def add_comment(body: CommentCreate, caller: Caller = Depends(get_current_user), db: Database = Depends(get_db)):
    ensure_found(get_by_id(db, POSTS, body.post_id), "Post not found. Cannot add comment.")
    comment = Comment(
        body=body.body,
        post_id=body.post_id,
        user=CommentAuthor(id=caller.id, first_name=caller.first_name, last_name=caller.last_name),
    )
    doc = create_document(db, COMMENTS, comment)
    return success(to_public(doc), "Comment added successfully.")


@router.put("/comments/{comment_id}")
def update_comment(comment_id: str, body: CommentUpdate, caller: Caller = Depends(get_current_user),
                   db: Database = Depends(get_db)):
    comment = ensure_found(get_by_id(db, COMMENTS, comment_id), "Comment not found.")
    authorize(caller, comment["user"]["id"], "You don't have permission to change other users' comments!")
    updated = db[COMMENTS].find_one_and_update(
        {"_id": comment["_id"]},
        {"$set": {"body": body.body, "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    return success(to_public(ensure_found(updated, "Comment not found.")), "Comment is successfully updated!")


@router.delete("/comments/{comment_id}")
def delete_comment(comment_id: str, caller: Caller = Depends(get_current_user), db: Database = Depends(get_db)):
    comment = ensure_found(get_by_id(db, COMMENTS, comment_id), "Comment not found.")
    authorize(caller, comment["user"]["id"], "You don't have permission to delete other users' comments!")
    db[COMMENTS].delete_one({"_id": comment["_id"]})
    return success({"id": comment_id}, "Comment deleted successfully!")


# ------------------- Likes -------------------
@router.post("/likes/addRemove/{post_id}")
def toggle_like(post_id: str, caller: Caller = Depends(get_current_user), db: Database = Depends(get_db)):
    """
    Like the post, or remove the caller's like if there already is one.
    Not atomic: two concurrent toggles by the same user may race.
    """
    ensure_found(get_by_id(db, POSTS, post_id), "Post not found.")

    existing = db[LIKES].find_one({"post_id": post_id, "user_id": caller.id})
    if existing:
        result = db[LIKES].delete_one({"post_id": post_id, "user_id": caller.id})
        return success(
            {"removed": result.deleted_count, "removed_by": caller.model_dump()},
            "Like removed successfully.",
        )

    like = Like(first_name=caller.first_name, last_name=caller.last_name, post_id=post_id, user_id=caller.id)
    doc = create_document(db, LIKES, like)
    doc.pop("updated_at", None)
    return success({"like": to_public(doc)}, "Like added successfully.")


# ------------------- Tags -------------------
@router.get("/tags")
def get_all_tags(db: Database = Depends(get_db)):
    tags = [to_public(t) for t in db[TAGS].find({}).sort("name", 1)]
    return success(tags, "All tags retrieved successfully." if tags else "No tags found.")


@router.post("/tags")
def add_tag(body: TagWrite, caller: Caller = Depends(get_current_user), db: Database = Depends(get_db)):
    if db[TAGS].find_one({"name": _exact_name(body.name)}):
        raise AlreadyExists("Tag with the same name already exists.")
    doc = create_document(db, TAGS, Tag(name=body.name, user_id=caller.id))
    return success(to_public(doc), "Tag added successfully.")


@router.put("/tags/{tag_id}")
def update_tag(tag_id: str, body: TagWrite, caller: Caller = Depends(get_current_user),
               db: Database = Depends(get_db)):
    tag = ensure_found(get_by_id(db, TAGS, tag_id), "Tag not found.")
    authorize(caller, tag["user_id"], "You don't have permission to update this tag.")
    if db[TAGS].find_one({"name": _exact_name(body.name), "_id": {"$ne": tag["_id"]}}):
        raise AlreadyExists("Tag with the same name already exists.")
    updated = db[TAGS].find_one_and_update(
        {"_id": tag["_id"]},
        {"$set": {"name": body.name, "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    return success(to_public(ensure_found(updated, "Tag not found.")), "Tag updated successfully.")


@router.delete("/tags/{tag_id}")
def delete_tag(tag_id: str, caller: Caller = Depends(get_current_user), db: Database = Depends(get_db)):
    tag = ensure_found(get_by_id(db, TAGS, tag_id), "Tag not found.")
    authorize(caller, tag["user_id"], "You don't have permission to delete this tag.")
    db[TAGS].delete_one({"_id": tag["_id"]})
    return success({"id": tag_id}, "Tag deleted successfully.")


# ------------------- Ads -------------------
@router.get("/ads")
def get_all_ads(
    limit: Optional[int] = Query(None, ge=1, le=MAX_PAGE_SIZE),
    page: Optional[int] = Query(None, ge=1, le=MAX_PAGE),
    db: Database = Depends(get_db),
):
    today = _today()
    query = {"start_date": {"$lte": today}, "end_date": {"$gte": today}}
    count = db[ADS].count_documents(query)
    cursor = paginate(db[ADS].find(query).sort([("start_date", -1), ("_id", -1)]), limit, page)
    ads = [to_public(a) for a in cursor]
    join_post_user(db, ads)
    custom = "All advertisements were successfully retrieved." if ads else "No advertisements found."
    return success({"ads": ads, "count": count}, custom)


@router.post("/ads")
def add_ad(body: AdCreate, caller: Caller = Depends(get_current_user), db: Database = Depends(get_db)):
    if db[ADS].find_one({"title": body.title, "user_id": caller.id}):
        raise AlreadyExists("An advertisement with the same title already exists for this user.")
    ad = Ad(
        **body.model_dump(exclude={"start_date", "end_date"}),
        user_id=caller.id,
        start_date=as_datetime(body.start_date),
        end_date=as_datetime(body.end_date),
    )
    doc = create_document(db, ADS, ad)
    return success(to_public(doc), "Advertisement added successfully.")


@router.post("/ads/paymentInit")
def payment_init(body: PaymentInitRequest, caller: Caller = Depends(get_current_user),
                 gateway: StripeGateway = Depends(get_payment_gateway)):
    try:
        client_secret = gateway.create_payment_intent(body.price, body.currency)
    except PaymentError:
        logger.exception("Payment initiation failed for user %s", caller.id)
        raise ServiceError("Payment initiation failed")
    return success({"client_secret": client_secret}, "Payment confirmed and ready for processing")


@router.delete("/ads/{ad_id}")
def delete_ad(ad_id: str, caller: Caller = Depends(get_current_user), db: Database = Depends(get_db)):
    ad = ensure_found(get_by_id(db, ADS, ad_id), "Advertisement not found.")
    authorize(caller, ad["user_id"], "You don't have permission to delete this advertisement.")
    db[ADS].delete_one({"_id": ad["_id"]})
    return success({"id": ad_id}, "Advertisement deleted successfully.")


# ------------------- Messages -------------------
@router.get("/messages")
def get_all_messages(caller: Caller = Depends(get_current_user), db: Database = Depends(get_db)):
    query = {"$or": [{"sender_id": caller.id}, {"receiver_id": caller.id}]}
    messages = [to_public(m) for m in db[MESSAGES].find(query).sort(OLDEST_FIRST)]
    join_sent_message_user(db, messages)
    return success(messages, "All messages retrieved successfully.")


@router.get("/messages/private/{user_id}")
def get_private_messages(user_id: str, caller: Caller = Depends(get_current_user), db: Database = Depends(get_db)):
    to_object_id(user_id)
    query = {
        "is_public": False,
        "$or": [
            {"sender_id": caller.id, "receiver_id": user_id},
            {"sender_id": user_id, "receiver_id": caller.id},
        ],
    }
    messages = [to_public(m) for m in db[MESSAGES].find(query).sort(OLDEST_FIRST)]
    return success(messages, "Private messages retrieved successfully.")


@router.post("/messages/addMessage/{user_id}")
def add_message(user_id: str, body: MessageCreate, caller: Caller = Depends(get_current_user),
                db: Database = Depends(get_db)):
    saved = save_message(db, caller.id, body.message, is_public=False, receiver_id=user_id)
    return success(saved, "Message added successfully.")


# ------------------- App -------------------
def create_app(settings: Optional[Settings] = None, db: Optional[Database] = None,
               payment_gateway: Optional[StripeGateway] = None) -> FastAPI:
    settings = settings or load_settings()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        client = None
        if app.state.db is None:
            client = connect(settings)
            app.state.db = client[settings.db_name]
        yield
        if client is not None:
            client.close()
            logger.info("MongoDB disconnected through app termination")

    app = FastAPI(title="ChitChatConnect API", lifespan=lifespan)
    app.state.settings = settings
    app.state.db = db
    app.state.payment_gateway = payment_gateway or StripeGateway(settings.stripe_sk)
    app.state.connections = ConnectionManager()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    install_error_handlers(app)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start_time = time.perf_counter()
        response = await call_next(request)
        logger.info("%s %s -> %s (%.1f ms)", request.method, request.url.path,
                    response.status_code, (time.perf_counter() - start_time) * 1000)
        return response

    app.include_router(site)
    app.include_router(router)
    app.add_api_websocket_route("/ws", chat_socket)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=app.state.settings.port)
