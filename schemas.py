"""
Database Schemas for ChitChatConnect

Each document model corresponds to a MongoDB collection; the collection name
is the lowercase of the class name. Request models follow the documents.
Reference ids (user_id, post_id, ...) are stored as strings.
"""

from datetime import date, datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator


class TagRef(BaseModel):
    name: str = Field(..., min_length=1, description="Tag name")


class CommentAuthor(BaseModel):
    id: str = Field(..., description="Author user id")
    first_name: str
    last_name: str


# ------------------- Documents -------------------

class User(BaseModel):
    """
    Registered accounts
    Collection: "user"
    """
    first_name: str = Field(..., min_length=1, description="First name")
    last_name: str = Field(..., min_length=1, description="Last name")
    email: EmailStr = Field(..., description="Email address (unique)")
    password_hash: str = Field(..., description="Hashed password")
    image: Optional[str] = Field(None, description="Profile image URL")
    role: Literal["user", "admin"] = Field("user", description="Role for permissions")
    gender: Optional[str] = None
    birth_date: Optional[datetime] = None


class Post(BaseModel):
    """
    Posts written by users
    Collection: "post"
    """
    title: str = Field(..., min_length=1)
    body: str = Field(..., min_length=1)
    image: Optional[str] = None
    is_public: bool = Field(False, description="Visible to everyone")
    user_id: str = Field(..., description="Owner user id")
    tags: List[TagRef] = Field(..., min_length=1, description="At least one tag")


class Comment(BaseModel):
    """
    Comments on posts, with a snapshot of the author
    Collection: "comment"
    """
    body: str = Field(..., min_length=1)
    post_id: str
    user: CommentAuthor


class Like(BaseModel):
    """
    One like per (user_id, post_id)
    Collection: "like"
    """
    first_name: str
    last_name: str
    post_id: str
    user_id: str


class Tag(BaseModel):
    """
    Labels, unique by name regardless of case
    Collection: "tag"
    """
    name: str = Field(..., min_length=1)
    user_id: str


class Message(BaseModel):
    """
    Direct (sender -> receiver) or public messages
    Collection: "message"
    """
    sender_id: str
    receiver_id: Optional[str] = None
    message: str = Field(..., min_length=1)
    is_public: bool = False
    seen_at: Optional[datetime] = None


class Ad(BaseModel):
    """
    Advertisements valid between start_date and end_date
    Collection: "ad"
    """
    title: str = Field(..., min_length=1)
    body: str = Field(..., min_length=1)
    image: str
    price: float = Field(..., ge=0)
    duration: int = Field(..., ge=0, description="Duration in days")
    user_id: str
    start_date: datetime
    end_date: datetime


# ------------------- Requests -------------------

class RegisterRequest(BaseModel):
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)
    image: Optional[str] = None
    gender: Optional[str] = None
    birth_date: Optional[date] = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class UserCreate(RegisterRequest):
    role: Literal["user", "admin"] = "user"


class UserUpdate(BaseModel):
    first_name: Optional[str] = Field(None, min_length=1)
    last_name: Optional[str] = Field(None, min_length=1)
    password: Optional[str] = Field(None, min_length=6)
    image: Optional[str] = None
    gender: Optional[str] = None
    birth_date: Optional[date] = None
    role: Optional[Literal["user", "admin"]] = None


class PostCreate(BaseModel):
    title: str = Field(..., min_length=1)
    body: str = Field(..., min_length=1)
    image: Optional[str] = None
    is_public: bool = False
    tags: List[TagRef] = Field(..., min_length=1)


class PostUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    body: Optional[str] = Field(None, min_length=1)
    image: Optional[str] = None
    is_public: Optional[bool] = None
    tags: Optional[List[TagRef]] = Field(None, min_length=1)


class CommentCreate(BaseModel):
    post_id: str
    body: str = Field(..., min_length=1)


class CommentUpdate(BaseModel):
    body: str = Field(..., min_length=1)


class TagWrite(BaseModel):
    name: str = Field(..., min_length=1)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Tag name must not be blank")
        return v


class AdCreate(BaseModel):
    title: str = Field(..., min_length=1)
    body: str = Field(..., min_length=1)
    image: str
    price: float = Field(..., ge=0)
    duration: int = Field(..., ge=0)
    start_date: date
    end_date: date

    @model_validator(mode="after")
    def check_window(self):
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class PaymentInitRequest(BaseModel):
    price: int = Field(..., gt=0, description="Amount in the currency's smallest unit")
    currency: str = Field(..., min_length=3, max_length=3)


class MessageCreate(BaseModel):
    message: str = Field(..., min_length=1)


class SendMessagePayload(BaseModel):
    message: str = Field(..., min_length=1)
    is_public: bool = False
    receiver_id: Optional[str] = None
