from __future__ import annotations

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def secret_override(key: str) -> str | None:
    """Apply-time override for a secret value, read from ORC_SECRET_<KEY>."""
    return os.getenv(f"ORC_SECRET_{key.upper()}")


@dataclass(frozen=True)
class Settings:
    # Target
    namespace: str = os.getenv("ORC_NAMESPACE", "fullstack-app")
    kube_context: str | None = os.getenv("ORC_KUBE_CONTEXT")

    # Images
    image_prefix: str = os.getenv("ORC_IMAGE_PREFIX", "fullstack-app")
    image_tag: str = os.getenv("ORC_IMAGE_TAG", "latest")
    source_root: str = os.getenv("ORC_SOURCE_ROOT", ".")
    frontend_base_url: str = os.getenv("ORC_FRONTEND_BASE_URL", "http://localhost:3001")

    # Rollout
    ready_timeout_s: float = _env_float("ORC_READY_TIMEOUT_S", 120.0)
    poll_interval_s: float = _env_float("ORC_POLL_INTERVAL_S", 2.0)
    # Routing is best-effort unless the target cluster must serve external traffic.
    ingress_required: bool = _env_bool("ORC_INGRESS_REQUIRED", False)
    ingress_host: str = os.getenv("ORC_INGRESS_HOST", "fullstack-app.local")

    # Event journal; empty disables it.
    events_db: str = os.getenv("ORC_EVENTS_DB", "orc-events.db")

    # Email summary after deploy (optional)
    enable_email: bool = _env_bool("ORC_ENABLE_EMAIL", False)
    smtp_host: str = os.getenv("ORC_SMTP_HOST", "smtp.gmail.com")
    smtp_port: int = _env_int("ORC_SMTP_PORT", 587)
    smtp_user: str | None = os.getenv("ORC_SMTP_USER")
    smtp_password: str | None = os.getenv("ORC_SMTP_PASSWORD")
    email_from: str | None = os.getenv("ORC_EMAIL_FROM")
    email_to: str | None = os.getenv("ORC_EMAIL_TO")


settings = Settings()
