from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Iterable, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from auto_alarm.util.logging import get_logger, log_event

DEFAULT_NAMESPACE = "AutoAlarm"
RECONCILE_FAILED = "ReconcileFailed"
WORKER_ERROR = "WorkerError"
THROTTLE_RETRIES = "ThrottleRetries"


@dataclass(frozen=True)
class MetricDimension:
    name: str
    value: str


class CloudWatchMetrics:
    """Operational metrics about AutoAlarm itself, not the monitored resources."""

    def __init__(self, *, namespace: str, enabled: bool) -> None:
        self.namespace = namespace
        self.enabled = enabled
        self.client = boto3.client("cloudwatch") if enabled else None
        self.logger = get_logger(self.__class__.__name__)

    @classmethod
    def from_env(cls) -> "CloudWatchMetrics":
        enabled = os.getenv("CLOUDWATCH_METRICS_ENABLED", "false").lower() == "true"
        namespace = os.getenv("CLOUDWATCH_METRICS_NAMESPACE", DEFAULT_NAMESPACE)
        return cls(namespace=namespace, enabled=enabled)

    def _put_metric(
        self,
        *,
        name: str,
        value: float,
        unit: str = "Count",
        dimensions: Optional[Iterable[MetricDimension]] = None,
    ) -> None:
        if not self.enabled or not self.client:
            return
        payload = {
            "MetricName": name,
            "Value": value,
            "Unit": unit,
        }
        if dimensions:
            payload["Dimensions"] = [
                {"Name": dimension.name, "Value": dimension.value} for dimension in dimensions
            ]
        try:
            self.client.put_metric_data(
                Namespace=self.namespace,
                MetricData=[payload],
            )
        except (BotoCoreError, ClientError) as exc:
            log_event(self.logger, "cloudwatch_metric_failed", error=str(exc), metric=name)

    def record_reconcile_failure(self, *, service: str, failed: bool) -> None:
        value = 1.0 if failed else 0.0
        self._put_metric(
            name=RECONCILE_FAILED,
            value=value,
            dimensions=[MetricDimension(name="service", value=service)],
        )
        self._put_metric(name=RECONCILE_FAILED, value=value)

    def record_worker_error(self, *, error_type: str) -> None:
        self._put_metric(
            name=WORKER_ERROR,
            value=1.0,
            dimensions=[MetricDimension(name="error_type", value=error_type)],
        )
        self._put_metric(name=WORKER_ERROR, value=1.0)

    def record_throttle(self, *, operation: str) -> None:
        self._put_metric(
            name=THROTTLE_RETRIES,
            value=1.0,
            dimensions=[MetricDimension(name="operation", value=operation)],
        )
        self._put_metric(name=THROTTLE_RETRIES, value=1.0)
