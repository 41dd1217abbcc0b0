from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence

from botocore.exceptions import BotoCoreError, ClientError

from auto_alarm.adapters.tags.fetchers import ResourceTagFetcher
from auto_alarm.app.models.alarm import ENABLED_TAG, TAG_NAMESPACE, Dimension, MetricAlarmConfig, MetricTarget
from auto_alarm.engine.canonical.models import CanonicalEvent
from auto_alarm.engine.reconcile.engine import ReconcileResult, ReconciliationEngine, catalog_metric_names
from auto_alarm.persistence.dynamo_alarm_index import DynamoAlarmIndex
from auto_alarm.util.logging import get_logger, log_event
from auto_alarm.util.metrics import CloudWatchMetrics


@dataclass(frozen=True)
class ServiceDefinition:
    service: str
    label: str
    pattern: str
    catalog: Sequence[MetricAlarmConfig]


def arn_resource(arn: str) -> str:
    """Resource part of an ARN: everything after the fifth colon."""
    parts = arn.split(":", 5)
    if len(parts) < 6 or not parts[0] == "arn":
        raise ValueError(f"not an ARN: {arn}")
    return parts[5]


def arn_account(arn: str) -> str:
    return arn.split(":", 5)[4]


def autoalarm_tags(tags: Mapping[str, str]) -> Dict[str, str]:
    return {key: value for key, value in tags.items() if key.startswith(TAG_NAMESPACE)}


class ServiceHandler:
    """Reconciles one kind of resource.

    Subclasses derive the identifier used in alarm names, the metric
    dimensions and the tag lookup for their service.
    """

    def __init__(
        self,
        definition: ServiceDefinition,
        engine: ReconciliationEngine,
        tags: ResourceTagFetcher,
        *,
        index: Optional[DynamoAlarmIndex] = None,
        metrics: Optional[CloudWatchMetrics] = None,
    ) -> None:
        self.definition = definition
        self.engine = engine
        self.tags = tags
        self.index = index
        self.metrics = metrics
        self.logger = get_logger(self.__class__.__name__)

    @property
    def label(self) -> str:
        return self.definition.label

    def identify(self, event: CanonicalEvent) -> str:
        raise NotImplementedError

    def dimensions(self, event: CanonicalEvent, identifier: str) -> List[Dimension]:
        raise NotImplementedError

    def fetch_tags(self, event: CanonicalEvent, identifier: str) -> Dict[str, str]:
        raise NotImplementedError

    def targets(
        self,
        event: CanonicalEvent,
        identifier: str,
        dimensions: List[Dimension],
        tags: Mapping[str, str],
    ) -> Dict[str, Optional[List[MetricTarget]]]:
        """Per-metric alarm targets keyed by tag key; ``None`` when they could not be listed."""
        return {}

    def reconcile(
        self,
        event: CanonicalEvent,
        identifier: str,
        tags: Mapping[str, str],
        catalog: Sequence[MetricAlarmConfig],
    ) -> ReconcileResult:
        dimensions = self.dimensions(event, identifier)
        targets = self.targets(event, identifier, dimensions, tags) if tags.get(ENABLED_TAG) == "true" else None
        return self.engine.reconcile_resource(
            self.label,
            identifier,
            tags,
            dimensions,
            catalog,
            targets,
            metric_names=catalog_metric_names(self.definition.catalog),
        )

    def handle(self, event: CanonicalEvent) -> None:
        identifier = self.identify(event)
        if event.destroyed:
            deleted = self.engine.prune(
                self.label, identifier, set(), metric_names=catalog_metric_names(self.definition.catalog)
            )
            self._forget(identifier)
            log_event(self.logger, "resource_destroyed", service=self.label, resource=identifier, deleted=deleted)
            return
        tags = event.tags if event.tags is not None else autoalarm_tags(self.fetch_tags(event, identifier))
        result = self.reconcile(event, identifier, tags, self.definition.catalog)
        if self.metrics:
            self.metrics.record_reconcile_failure(service=self.label, failed=bool(result.failures))
        self._remember(identifier, result, tags)
        log_event(
            self.logger,
            "resource_reconciled",
            service=self.label,
            resource=identifier,
            kept=sorted(result.kept),
            deleted=result.deleted,
            failures=result.failures,
        )

    def _remember(self, identifier: str, result: ReconcileResult, tags: Mapping[str, str]) -> None:
        if not self.index:
            return
        try:
            if result.kept:
                self.index.put(f"{self.label}#{identifier}", result.kept, dict(tags))
            else:
                self.index.delete(f"{self.label}#{identifier}")
        except (BotoCoreError, ClientError) as exc:
            if self.metrics:
                self.metrics.record_worker_error(error_type="alarm_index_error")
            log_event(self.logger, "alarm_index_write_failed", resource=identifier, error=str(exc))

    def _forget(self, identifier: str) -> None:
        if not self.index:
            return
        try:
            self.index.delete(f"{self.label}#{identifier}")
        except (BotoCoreError, ClientError) as exc:
            if self.metrics:
                self.metrics.record_worker_error(error_type="alarm_index_error")
            log_event(self.logger, "alarm_index_write_failed", resource=identifier, error=str(exc))
