"""
core/config.py -- Centralized configuration via pydantic-settings.

All environment variable reads for tokengate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Two layers:
  Settings (BaseSettings): reads env vars and an optional .env file. Field
      names map to env var names (e.g. secret_key -> SECRET_KEY).

  AuthConfig (frozen dataclass): the immutable view the auth components
      receive at construction time. Built once from Settings at application
      start and never mutated while requests are served. Components hold a
      reference to it instead of reading Settings themselves.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. JWT signing
       relies on key entropy -- a short key weakens it.

  [M7] Outside DEBUG mode a missing SECRET_KEY is a hard startup failure.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from types import MappingProxyType
from typing import Mapping

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("tokengate.config")


class StorageMode(str, Enum):
    """Where the client keeps its access token.

    cookie -- httpOnly cookie set by the login response.
    client -- token returned in the login body; the client stores it
              (sessionStorage, keychain...) and sends it as a Bearer header.
    """

    cookie = "cookie"
    client = "client"


CRYPTO_MODS = ("bcrypt", "pbkdf2")
TOKEN_ALGORITHMS = ("HS512", "HS256")

_DEFAULT_REDIRECT_PAGES = {
    "admin": "/admin",
    "default": "/",
    "login": "/login",
    "logout": "/",
}


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in tests
    without a real .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    database_url: str = "sqlite:///tokengate.db"

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    crypto_mod: str = "bcrypt"
    login_page: str = "/login"
    hash_name: str = "password_hash"
    unique_id: str = "username"
    storage: StorageMode = StorageMode.cookie
    redirects: bool = False
    secure_cookies: bool = False
    min_password_length: int = 8
    max_password_length: int = 80

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    token_alg: str = "HS512"
    token_validity_minutes: int = 120
    # Confirmation / reset links older than this are rejected.
    key_expiry_minutes: int = 60

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    signup_rate_limit: str = "5/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Tokens will not survive restart -- acceptable for local dev.

        Production mode: refuse to start if SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters [M6].
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("WARNING: Using auto-generated SECRET_KEY. Tokens will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()


@dataclass(frozen=True)
class AuthConfig:
    """Read-only auth configuration shared by every pipeline component.

    crypto_mod selects the password hash function ("bcrypt" or "pbkdf2").
    hash_name is the User field the password hash is written to.
    unique_id is the User field a login identifies the user by.
    """

    secret_key: str
    crypto_mod: str = "bcrypt"
    login_page: str = "/login"
    hash_name: str = "password_hash"
    unique_id: str = "username"
    storage: StorageMode = StorageMode.cookie
    redirects: bool = False
    secure_cookies: bool = False
    min_length: int = 8
    max_length: int = 80
    token_alg: str = "HS512"
    token_validity_minutes: int = 120
    key_expiry_minutes: int = 60
    redirect_pages: Mapping[str, str] = field(default_factory=lambda: MappingProxyType(dict(_DEFAULT_REDIRECT_PAGES)))

    def __post_init__(self) -> None:
        if self.crypto_mod not in CRYPTO_MODS:
            raise ValueError(f"crypto_mod must be one of {CRYPTO_MODS}, got {self.crypto_mod!r}")
        if self.token_alg not in TOKEN_ALGORITHMS:
            raise ValueError(f"token_alg must be one of {TOKEN_ALGORITHMS}, got {self.token_alg!r}")
        if not self.login_page.startswith("/"):
            raise ValueError("login_page must be an absolute path")
        if self.min_length > self.max_length:
            raise ValueError("min_length cannot exceed max_length")
        # Accept plain strings ("client") from callers that skip Settings.
        object.__setattr__(self, "storage", StorageMode(self.storage))
        if not isinstance(self.redirect_pages, MappingProxyType):
            pages = {**_DEFAULT_REDIRECT_PAGES, **dict(self.redirect_pages)}
            object.__setattr__(self, "redirect_pages", MappingProxyType(pages))

    @classmethod
    def from_settings(cls, settings: Settings) -> "AuthConfig":
        return cls(
            secret_key=settings.secret_key,
            crypto_mod=settings.crypto_mod,
            login_page=settings.login_page,
            hash_name=settings.hash_name,
            unique_id=settings.unique_id,
            storage=settings.storage,
            redirects=settings.redirects,
            secure_cookies=settings.secure_cookies,
            min_length=settings.min_password_length,
            max_length=settings.max_password_length,
            token_alg=settings.token_alg,
            token_validity_minutes=settings.token_validity_minutes,
            key_expiry_minutes=settings.key_expiry_minutes,
        )

    @property
    def use_cookie(self) -> bool:
        return self.storage is StorageMode.cookie
