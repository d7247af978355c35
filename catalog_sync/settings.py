"""Runtime settings read from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass, field


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_list(name: str, default: str) -> list[str]:
    raw = os.environ.get(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass(slots=True)
class SyncSettings:
    store_domain: str | None = None
    access_token: str | None = None
    api_version: str = "2024-01"
    webhook_secret: str | None = None
    cron_secret: str | None = None
    environment: str = "development"
    scheduler_header: str = "x-vercel-cron"
    poll_interval: float = 5.0
    max_wait: float = 300.0
    stale_after_minutes: int = 30
    progress_every: int = 100
    batch_size: int = 500
    check_platform: bool = True
    prepack_category_ids: tuple[int, ...] = (399, 401)
    default_display_priority: int = 10000
    excluded_tags: tuple[str, ...] = field(default_factory=lambda: ("GROUP", "Defective"))
    backup_skus: bool = True

    @classmethod
    def from_env(cls) -> "SyncSettings":
        return cls(
            store_domain=os.environ.get("SHOPIFY_STORE_DOMAIN"),
            access_token=os.environ.get("SHOPIFY_ACCESS_TOKEN"),
            api_version=os.environ.get("SHOPIFY_API_VERSION", "2024-01"),
            webhook_secret=os.environ.get("SHOPIFY_WEBHOOK_SECRET"),
            cron_secret=os.environ.get("CRON_SECRET"),
            environment=os.environ.get("APP_ENV", "development"),
            scheduler_header=os.environ.get("SYNC_SCHEDULER_HEADER", "x-vercel-cron"),
            poll_interval=float(os.environ.get("SYNC_POLL_INTERVAL", 5)),
            max_wait=float(os.environ.get("SYNC_MAX_WAIT", 300)),
            stale_after_minutes=int(os.environ.get("SYNC_STALE_AFTER_MINUTES", 30)),
            progress_every=int(os.environ.get("SYNC_PROGRESS_EVERY", 100)),
            batch_size=int(os.environ.get("SYNC_BATCH_SIZE", 500)),
            check_platform=_env_bool("SYNC_CHECK_PLATFORM", True),
            prepack_category_ids=tuple(int(v) for v in _env_list("SYNC_PREPACK_CATEGORY_IDS", "399,401")),
            default_display_priority=int(os.environ.get("SYNC_DEFAULT_DISPLAY_PRIORITY", 10000)),
            excluded_tags=tuple(_env_list("SYNC_EXCLUDED_TAGS", "GROUP,Defective")),
            backup_skus=_env_bool("SYNC_BACKUP_SKUS", True),
        )

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def shopify_configured(self) -> bool:
        return bool(self.store_domain and self.access_token)

    @property
    def graphql_url(self) -> str:
        domain = (self.store_domain or "").replace("https://", "").replace("http://", "").rstrip("/")
        return f"https://{domain}/admin/api/{self.api_version}/graphql.json"
