from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Tuple

from dotenv import load_dotenv


load_dotenv()


def _split_codes(raw: str) -> Tuple[str, ...]:
    return tuple(code.strip() for code in raw.split(",") if code.strip())


@dataclass(frozen=True)
class Settings:
    db_host: str = os.getenv("DB_HOST", "127.0.0.1")
    db_port: int = int(os.getenv("DB_PORT", "3306"))
    db_name: str = os.getenv("DB_NAME", "brokerage")
    db_user: str = os.getenv("DB_USER", "brokerage")
    db_password: str = os.getenv("DB_PASSWORD", "")
    db_connection_timeout: int = int(os.getenv("DB_CONNECTION_TIMEOUT", "30"))

    # Minimum score (0-100) a pair needs to join a group, per confidence tier
    high_floor: float = float(os.getenv("HIGH_FLOOR", "60"))
    medium_floor: float = float(os.getenv("MEDIUM_FLOOR", "40"))
    low_floor: float = float(os.getenv("LOW_FLOOR", "30"))

    phone_country_codes: Tuple[str, ...] = _split_codes(os.getenv("PHONE_COUNTRY_CODES", "55"))
    phone_national_length: int = int(os.getenv("PHONE_NATIONAL_LENGTH", "11"))

    relationship_timeout: float = float(os.getenv("RELATIONSHIP_TIMEOUT", "15"))
    notes_separator: str = os.getenv("NOTES_SEPARATOR", "\n\n=== MERGED ===\n\n")


def get_settings(require_db: bool = True) -> Settings:
    settings = Settings()
    if require_db and not settings.db_password:
        raise ValueError("DB_PASSWORD is required. Set it in environment or .env file.")
    return settings
