"""
Application settings for ChitChatConnect

Settings are read once from the environment (and an optional .env file) at
process start and passed explicitly to the app factory.
"""

import logging
import os
from typing import Literal, Optional, Tuple

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field
from starlette.requests import HTTPConnection


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    port: int = Field(8000, description="Port the server listens on")
    db_url: str = Field("mongodb://localhost:27017", description="MongoDB connection string")
    db_name: str = Field("chitchatconnect", description="MongoDB database name")
    jwt_key: str = Field("chitchat-dev-secret", description="JWT signing key")
    jwt_algorithm: str = "HS256"
    token_expire_minutes: int = Field(60 * 24, description="Access token lifetime")
    stripe_sk: Optional[str] = Field(None, description="Payment provider secret key")
    cors_origins: Tuple[str, ...] = ()
    dev_app_name: str = "ChitChatConnect (dev)"
    prod_app_name: str = "ChitChatConnect"
    environment: Literal["development", "production"] = "development"
    tag_filter_mode: Literal["any", "all"] = "any"
    log_level: str = "INFO"

    @property
    def app_name(self) -> str:
        return self.prod_app_name if self.environment == "production" else self.dev_app_name


def _split_origins(raw: Optional[str], port: int) -> Tuple[str, ...]:
    if not raw:
        return ("http://localhost:3000", f"http://localhost:{port}")
    return tuple(origin.strip() for origin in raw.split(",") if origin.strip())


def load_settings() -> Settings:
    """Build Settings from environment variables (loads .env if present)."""
    load_dotenv()
    defaults = Settings()
    port = int(os.getenv("PORT", defaults.port))
    environment = os.getenv("APP_ENV", defaults.environment)
    return Settings(
        port=port,
        db_url=os.getenv("DB_URL", defaults.db_url),
        db_name=os.getenv("DB_NAME", defaults.db_name),
        jwt_key=os.getenv("JWT_KEY", defaults.jwt_key),
        token_expire_minutes=int(os.getenv("TOKEN_EXPIRE_MINUTES", defaults.token_expire_minutes)),
        stripe_sk=os.getenv("STRIPE_SK") or None,
        cors_origins=_split_origins(os.getenv("CORS_ORIGINS"), port),
        dev_app_name=os.getenv("DEV_APP_NAME", defaults.dev_app_name),
        prod_app_name=os.getenv("PROD_APP_NAME", defaults.prod_app_name),
        environment=environment,
        tag_filter_mode=os.getenv("TAG_FILTER_MODE", defaults.tag_filter_mode),
        log_level=os.getenv("LOG_LEVEL", defaults.log_level),
    )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def get_settings(conn: HTTPConnection) -> Settings:
    return conn.app.state.settings
