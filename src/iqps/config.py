"""
Runtime configuration, read from `IQPS_*` environment variables.

A local `.env` file is loaded first (without overriding the real
environment), as the API and CLI entry points do.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from dotenv import find_dotenv, load_dotenv
from sqlalchemy.engine import URL

from iqps.domain.errors import ConfigError

DEFAULT_STATIC_FILES_URL = "https://static.metakgp.org"
DEFAULT_STATIC_FILE_STORAGE_LOCATION = "/srv/static"
DEFAULT_UPLOADED_QPS_PATH = "/iqps/uploaded"
DEFAULT_LIBRARY_QPS_PATH = "/peqp/qp"
DEFAULT_MAX_UPLOAD_LIMIT = 10
DEFAULT_SERVER_PORT = 8080


def load_env() -> None:
    load_dotenv(find_dotenv(usecwd=True), override=False)


def _int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got {raw!r}") from None


def _float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{key} must be a number, got {raw!r}") from None


def parse_admin_tokens(raw: str) -> Dict[str, str]:
    """`tok1:alice,tok2:bob` -> {"tok1": "alice", "tok2": "bob"}."""
    tokens: Dict[str, str] = {}
    for item in (raw or "").split(","):
        item = item.strip()
        if not item:
            continue
        token, sep, username = item.partition(":")
        if not sep or not token.strip() or not username.strip():
            raise ConfigError("IQPS_ADMIN_TOKENS entries must look like `token:username`.")
        tokens[token.strip()] = username.strip()
    return tokens


def _db_url(env: Mapping[str, str]) -> str:
    url = env.get("IQPS_DB_URL", "").strip()
    if url:
        return url
    name = env.get("IQPS_DB_NAME", "").strip()
    if not name:
        return "sqlite:///data/iqps.db"
    return URL.create(
        "postgresql+psycopg",
        username=env.get("IQPS_DB_USER") or None,
        password=env.get("IQPS_DB_PASSWORD") or None,
        host=env.get("IQPS_DB_HOST") or "localhost",
        port=_int(env, "IQPS_DB_PORT", 5432),
        database=name,
    ).render_as_string(hide_password=False)


@dataclass
class IqpsSettings:
    db_url: str
    db_pool_size: int = 5
    db_pool_timeout: float = 3.0
    static_files_url: str = DEFAULT_STATIC_FILES_URL
    static_file_storage_location: str = DEFAULT_STATIC_FILE_STORAGE_LOCATION
    uploaded_qps_path: str = DEFAULT_UPLOADED_QPS_PATH
    library_qps_path: str = DEFAULT_LIBRARY_QPS_PATH
    max_upload_limit: int = DEFAULT_MAX_UPLOAD_LIMIT
    slack_webhook_url: str = ""
    admin_tokens: Dict[str, str] = field(default_factory=dict)
    cors_allowed_origins: List[str] = field(default_factory=lambda: ["*"])
    server_port: int = DEFAULT_SERVER_PORT

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "IqpsSettings":
        if env is None:
            load_env()
            env = os.environ

        settings = cls(
            db_url=_db_url(env),
            db_pool_size=_int(env, "IQPS_DB_POOL_SIZE", 5),
            db_pool_timeout=_float(env, "IQPS_DB_POOL_TIMEOUT", 3.0),
            static_files_url=env.get("IQPS_STATIC_FILES_URL") or DEFAULT_STATIC_FILES_URL,
            static_file_storage_location=(
                env.get("IQPS_STATIC_FILE_STORAGE_LOCATION") or DEFAULT_STATIC_FILE_STORAGE_LOCATION
            ),
            uploaded_qps_path=env.get("IQPS_UPLOADED_QPS_PATH") or DEFAULT_UPLOADED_QPS_PATH,
            library_qps_path=env.get("IQPS_LIBRARY_QPS_PATH") or DEFAULT_LIBRARY_QPS_PATH,
            max_upload_limit=_int(env, "IQPS_MAX_UPLOAD_LIMIT", DEFAULT_MAX_UPLOAD_LIMIT),
            slack_webhook_url=(env.get("IQPS_SLACK_WEBHOOK_URL") or "").strip(),
            admin_tokens=parse_admin_tokens(env.get("IQPS_ADMIN_TOKENS", "")),
            cors_allowed_origins=[
                o.strip() for o in (env.get("IQPS_CORS_ALLOWED_ORIGINS") or "*").split(",") if o.strip()
            ],
            server_port=_int(env, "IQPS_SERVER_PORT", DEFAULT_SERVER_PORT),
        )
        if settings.db_pool_size < 1:
            raise ConfigError("IQPS_DB_POOL_SIZE must be at least 1.")
        if settings.max_upload_limit < 1:
            raise ConfigError("IQPS_MAX_UPLOAD_LIMIT must be at least 1.")
        return settings
