from __future__ import annotations

import os
from typing import Optional

from pydantic import BaseModel, Field


def _optional(name: str) -> Optional[str]:
    value = os.getenv(name, "").strip()
    return value or None


class Settings(BaseModel):
    worker_concurrency: int = Field(default=4, ge=1)
    queue_url: Optional[str] = None
    retry_max_attempts: int = Field(default=8, ge=1)
    retry_base_delay_seconds: float = Field(default=0.25, gt=0)
    retry_max_delay_seconds: float = Field(default=20.0, gt=0)
    alarm_index_table: Optional[str] = None
    prometheus_workspace_id: Optional[str] = None
    rearm_queue_url: Optional[str] = None
    rearm_batch_size: int = Field(default=10, ge=1, le=10)
    catalog_overrides_path: Optional[str] = None
    anomaly_timezone: str = "UTC"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            worker_concurrency=int(os.getenv("WORKER_CONCURRENCY", "4")),
            queue_url=_optional("SQS_QUEUE_URL"),
            retry_max_attempts=int(os.getenv("RETRY_MAX_ATTEMPTS", "8")),
            retry_base_delay_seconds=float(os.getenv("RETRY_BASE_DELAY_SECONDS", "0.25")),
            retry_max_delay_seconds=float(os.getenv("RETRY_MAX_DELAY_SECONDS", "20")),
            alarm_index_table=_optional("ALARM_INDEX_TABLE"),
            prometheus_workspace_id=_optional("PROMETHEUS_WORKSPACE_ID"),
            rearm_queue_url=_optional("REARM_QUEUE_URL"),
            rearm_batch_size=int(os.getenv("REARM_BATCH_SIZE", "10")),
            catalog_overrides_path=_optional("CATALOG_OVERRIDES_PATH"),
            anomaly_timezone=os.getenv("ANOMALY_TIMEZONE", "UTC"),
        )
