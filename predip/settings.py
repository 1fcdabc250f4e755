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


def _env_list(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None:
        return default
    return tuple(x.strip() for x in raw.split(",") if x.strip())


@dataclass(frozen=True)
class Settings:
    # Core
    db_path: str = os.getenv("PREDIP_DB_PATH", "predip.db")
    namespace: str = os.getenv("PREDIP_NAMESPACE", "openstack")
    resync_interval_s: int = _env_int("PREDIP_RESYNC_INTERVAL_S", 30)

    # Record store: "memory" keeps everything in-process, "kube" talks to the API server
    # (in-cluster service account, else the local kubeconfig).
    store_backend: str = os.getenv("PREDIP_STORE_BACKEND", "memory")
    kube_timeout_s: int = _env_int("PREDIP_KUBE_TIMEOUT_S", 10)

    # Network
    network_attachment: str = os.getenv("PREDIP_NETWORK_ATTACHMENT", "designate")
    # When set, the static CIDR is used instead of reading the attachment record.
    network_cidr: str | None = os.getenv("PREDIP_NETWORK_CIDR")
    network_range_start: str | None = os.getenv("PREDIP_NETWORK_RANGE_START")
    network_range_end: str | None = os.getenv("PREDIP_NETWORK_RANGE_END")
    pool_size: int = _env_int("PREDIP_POOL_SIZE", 25)
    sibling_pools: tuple[str, ...] = _env_list(
        "PREDIP_SIBLING_POOLS", ("designate-bind-ip-map", "designate-mdns-ip-map")
    )
    interface_name: str = os.getenv("PREDIP_INTERFACE_NAME", "designate")

    # Annotation write retry
    annotation_max_retries: int = _env_int("PREDIP_ANNOTATION_MAX_RETRIES", 5)
    annotation_base_delay_s: float = _env_float("PREDIP_ANNOTATION_BASE_DELAY_S", 0.1)

    # Email alerting (optional)
    enable_email: bool = _env_bool("PREDIP_ENABLE_EMAIL", False)
    smtp_host: str = os.getenv("PREDIP_SMTP_HOST", "smtp.gmail.com")
    smtp_port: int = _env_int("PREDIP_SMTP_PORT", 587)
    smtp_user: str | None = os.getenv("PREDIP_SMTP_USER")
    smtp_password: str | None = os.getenv("PREDIP_SMTP_PASSWORD")
    email_from: str | None = os.getenv("PREDIP_EMAIL_FROM")
    email_to: str | None = os.getenv("PREDIP_EMAIL_TO")


settings = Settings()
