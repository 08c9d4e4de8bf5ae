from __future__ import annotations
import os
from dataclasses import dataclass, field
from typing import Mapping, Optional, Tuple

# Ticket payment statuses
PENDING = "pending"
CONFIRMED = "confirmed"
FAILED = "failed"

# Gateway status description -> ticket status. First case-insensitive
# substring hit wins, anything unmapped stays pending.
DEFAULT_STATUS_RULES: Tuple[Tuple[str, str], ...] = (
    ("completed", CONFIRMED),
    ("successful", CONFIRMED),
    ("failed", FAILED),
    ("cancelled", FAILED),
)


def parse_status_rules(raw: Optional[str]) -> Tuple[Tuple[str, str], ...]:
    """Parse ``completed=confirmed,failed=failed`` into mapping rules."""
    if not raw or not raw.strip():
        return DEFAULT_STATUS_RULES
    rules = []
    for part in raw.split(","):
        if not part.strip():
            continue
        needle, sep, status = part.partition("=")
        needle, status = needle.strip().lower(), status.strip().lower()
        if not sep or not needle or status not in (PENDING, CONFIRMED, FAILED):
            raise ValueError(f"bad PESAPAL_STATUS_MAP entry: {part!r}")
        rules.append((needle, status))
    return tuple(rules)


def _bool(v: Optional[str], default: bool) -> bool:
    if v is None or v.strip() == "":
        return default
    return v.strip().lower() in ("1", "true", "yes", "on")


def _opt(env: Mapping[str, str], name: str) -> Optional[str]:
    v = env.get(name)
    if v is None:
        return None
    v = v.strip()
    return v or None


@dataclass(frozen=True)
class Settings:
    database_url: str
    db_pool_size: int = 10
    db_max_overflow: int = 10
    db_pool_timeout: int = 30
    db_gate_limit: Optional[int] = None

    messages_backend: str = "redis"  # 'redis' | 'pg'
    redis_url: str = "redis://127.0.0.1:6379"
    redis_max_conn: int = 64

    session_secret: str = "dev-secret-change-me"
    session_max_age: int = 3600
    admin_email: str = "admin@tipac.com"
    admin_password: str = "change-me"

    pesapal_consumer_key: Optional[str] = None
    pesapal_consumer_secret: Optional[str] = None
    pesapal_base_url: str = "https://pay.pesapal.com/v3"
    pesapal_callback_url: Optional[str] = None
    pesapal_ipn_id: Optional[str] = None
    pesapal_ipn_url: Optional[str] = None
    pesapal_timeout: float = 10.0
    pesapal_currency: str = "UGX"
    pesapal_country_code: str = "UG"
    status_rules: Tuple[Tuple[str, str], ...] = field(
        default=DEFAULT_STATUS_RULES
    )

    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 465
    email_user: Optional[str] = None
    email_pass: Optional[str] = None
    recipient_email: Optional[str] = None

    youtube_api_key: Optional[str] = None
    youtube_channel_id: str = "UC9zkuY5thj7q-6gds2DDNKg"

    # open policy question: a named buyer bypasses a deactivated batch
    buyer_name_overrides_batch: bool = True

    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Mapping[str, str] = os.environ) -> "Settings":
        database_url = _opt(env, "DATABASE_URL")
        if database_url is None:
            raise RuntimeError("NEED DATABASE_URL!")
        gate = _opt(env, "DB_GATE_LIMIT")
        return cls(
            database_url=database_url,
            db_pool_size=int(env.get("DB_POOL_SIZE", "10")),
            db_max_overflow=int(env.get("DB_MAX_OVERFLOW", "10")),
            db_pool_timeout=int(env.get("DB_POOL_TIMEOUT", "30")),
            db_gate_limit=int(gate) if gate else None,
            messages_backend=env.get("MESSAGES_BACKEND", "redis").lower(),
            redis_url=env.get("REDIS_URL", "redis://127.0.0.1:6379"),
            redis_max_conn=int(env.get("REDIS_MAX_CONN", "64")),
            session_secret=env.get("SESSION_SECRET", "dev-secret-change-me"),
            session_max_age=int(env.get("SESSION_MAX_AGE", "3600")),
            admin_email=env.get("ADMIN_EMAIL", "admin@tipac.com"),
            admin_password=env.get("ADMIN_PASSWORD", "change-me"),
            pesapal_consumer_key=_opt(env, "PESAPAL_CONSUMER_KEY"),
            pesapal_consumer_secret=_opt(env, "PESAPAL_CONSUMER_SECRET"),
            pesapal_base_url=env.get(
                "PESAPAL_BASE_URL", "https://pay.pesapal.com/v3"
            ),
            pesapal_callback_url=_opt(env, "PESAPAL_CALLBACK_URL"),
            pesapal_ipn_id=_opt(env, "PESAPAL_IPN_ID"),
            pesapal_ipn_url=_opt(env, "PESAPAL_IPN_URL"),
            pesapal_timeout=float(env.get("PESAPAL_TIMEOUT", "10")),
            pesapal_currency=env.get("PESAPAL_CURRENCY", "UGX"),
            pesapal_country_code=env.get("PESAPAL_COUNTRY_CODE", "UG"),
            status_rules=parse_status_rules(env.get("PESAPAL_STATUS_MAP")),
            smtp_host=env.get("SMTP_HOST", "smtp.gmail.com"),
            smtp_port=int(env.get("SMTP_PORT", "465")),
            email_user=_opt(env, "EMAIL_USER"),
            email_pass=_opt(env, "EMAIL_PASS"),
            recipient_email=_opt(env, "RECIPIENT_EMAIL"),
            youtube_api_key=_opt(env, "YOUTUBE_API_KEY"),
            youtube_channel_id=env.get(
                "YOUTUBE_CHANNEL_ID", "UC9zkuY5thj7q-6gds2DDNKg"
            ),
            buyer_name_overrides_batch=_bool(
                env.get("BUYER_NAME_OVERRIDES_BATCH"), True
            ),
            log_level=env.get("LOG_LEVEL", "INFO"),
        )
