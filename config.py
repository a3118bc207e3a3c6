"""
Runtime settings for the Maintenance Tracker API.

Everything is read from environment variables so the same build runs locally,
in CI and behind a hosting provider without code changes.
"""
import os
import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

DEFAULT_DEV_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5173",
    "http://localhost:8000",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:5173",
    "http://127.0.0.1:8000",
]
DEFAULT_DEV_ORIGIN_REGEX = r"^https://.*\.vercel\.app$"


@dataclass(frozen=True)
class Settings:
    database_url: str = "mongodb://localhost:27017"
    database_name: str = "maintenance_tracker"
    port: int = 8000
    token_ttl_seconds: int = 3600
    log_level: str = "INFO"
    allowed_origins: List[str] = field(default_factory=lambda: list(DEFAULT_DEV_ORIGINS))
    allowed_origin_regex: Optional[str] = DEFAULT_DEV_ORIGIN_REGEX


def parse_origins(raw: str) -> Tuple[List[str], Optional[str]]:
    """Split ALLOWED_ORIGINS into literal origins and one combined regex.

    Entries prefixed with ``regex:`` are treated as patterns, e.g.
    ``https://app.example.com,regex:^https://.*\\.example\\.dev$``.
    """
    origins: List[str] = []
    patterns: List[str] = []
    for item in raw.split(","):
        item = item.strip()
        if not item:
            continue
        if item.startswith("regex:"):
            pattern = item[len("regex:"):]
            re.compile(pattern)
            patterns.append(pattern)
        else:
            origins.append(item)
    regex = "|".join(f"(?:{p})" for p in patterns) if patterns else None
    return origins, regex


def load_settings() -> Settings:
    raw_origins = os.getenv("ALLOWED_ORIGINS")
    if raw_origins is not None:
        origins, origin_regex = parse_origins(raw_origins)
    else:
        origins, origin_regex = list(DEFAULT_DEV_ORIGINS), DEFAULT_DEV_ORIGIN_REGEX
    return Settings(
        database_url=os.getenv("DATABASE_URL", Settings.database_url),
        database_name=os.getenv("DATABASE_NAME", Settings.database_name),
        port=int(os.getenv("PORT", 8000)),
        token_ttl_seconds=int(os.getenv("TOKEN_TTL_SECONDS", 3600)),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        allowed_origins=origins,
        allowed_origin_regex=origin_regex,
    )
