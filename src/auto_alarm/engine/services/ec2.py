from __future__ import annotations

from typing import Dict, List, Mapping, Optional, Sequence

from auto_alarm.adapters.alarms.prometheus import PrometheusRule, PrometheusRuleWriter
from auto_alarm.app.models.alarm import (
    TAG_NAMESPACE,
    ComparisonOperator,
    Dimension,
    MetricAlarmConfig,
    MetricTarget,
)
from auto_alarm.engine.canonical.models import CanonicalEvent
from auto_alarm.engine.options.resolver import format_threshold
from auto_alarm.engine.reconcile.engine import ReconcileResult, compute_desired
from auto_alarm.engine.reconcile.naming import ALARM_PREFIX, resource_prefix
from auto_alarm.engine.services.base import ServiceHandler, arn_resource
from auto_alarm.util.errors import NonRetryableError, RetryableError
from auto_alarm.util.logging import log_event

TARGET_TAG = f"{TAG_NAMESPACE}target"
PROMETHEUS_TARGET = "prometheus"

# Metrics published once per mount path, keyed to the dimension that names the path.
FANOUT_METRICS = {"disk_used_percent": "path"}

PROMQL_OPERATORS = {
    ComparisonOperator.GREATER_THAN_OR_EQUAL: ">=",
    ComparisonOperator.GREATER_THAN: ">",
    ComparisonOperator.LESS_THAN: "<",
    ComparisonOperator.LESS_THAN_OR_EQUAL: "<=",
}


class Ec2Handler(ServiceHandler):
    def __init__(self, *args, prometheus: Optional[PrometheusRuleWriter] = None, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.prometheus = prometheus

    def identify(self, event: CanonicalEvent) -> str:
        if event.is_arn:
            return arn_resource(event.resource_id).split("/")[-1]
        return event.resource_id

    def dimensions(self, event: CanonicalEvent, identifier: str) -> List[Dimension]:
        return [Dimension(name="InstanceId", value=identifier)]

    def fetch_tags(self, event: CanonicalEvent, identifier: str) -> Dict[str, str]:
        return self.tags.ec2_instance(identifier)

    def targets(
        self,
        event: CanonicalEvent,
        identifier: str,
        dimensions: List[Dimension],
        tags: Mapping[str, str],
    ) -> Dict[str, Optional[List[MetricTarget]]]:
        targets: Dict[str, Optional[List[MetricTarget]]] = {}
        for config in self.definition.catalog:
            path_dimension = FANOUT_METRICS.get(config.metric_name)
            if not path_dimension:
                continue
            if config.tag_name not in tags and not config.default_create:
                continue
            try:
                targets[config.tag_key] = self._path_targets(config, identifier, path_dimension)
            except (RetryableError, NonRetryableError) as exc:
                log_event(
                    self.logger,
                    "storage_paths_lookup_failed",
                    instance_id=identifier,
                    metric=config.metric_name,
                    error=str(exc),
                )
                targets[config.tag_key] = None
        return targets

    def _path_targets(self, config: MetricAlarmConfig, identifier: str, path_dimension: str) -> List[MetricTarget]:
        metrics = self.engine.backend.list_metrics(
            namespace=config.metric_namespace,
            metric_name=config.metric_name,
            dimensions=[{"Name": "InstanceId", "Value": identifier}],
        )
        by_path: Dict[str, MetricTarget] = {}
        for metric in metrics:
            dimensions = [Dimension(name=item["Name"], value=item["Value"]) for item in metric.get("Dimensions", [])]
            path = next((item.value for item in dimensions if item.name == path_dimension), None)
            if path and path not in by_path:
                by_path[path] = MetricTarget(dimensions=dimensions, discriminator=path)
        if not by_path:
            log_event(self.logger, "storage_paths_not_found", instance_id=identifier, metric=config.metric_name)
        return [by_path[path] for path in sorted(by_path)]

    def reconcile(
        self,
        event: CanonicalEvent,
        identifier: str,
        tags: Mapping[str, str],
        catalog: Sequence[MetricAlarmConfig],
    ) -> ReconcileResult:
        if self.prometheus:
            wants_prometheus = tags.get(TARGET_TAG, "").lower() == PROMETHEUS_TARGET
            if self._sync_prometheus(identifier, tags, catalog, enabled=wants_prometheus) and wants_prometheus:
                catalog = [config for config in catalog if not config.prometheus_expression]
        return super().reconcile(event, identifier, tags, catalog)

    def _sync_prometheus(
        self,
        identifier: str,
        tags: Mapping[str, str],
        catalog: Sequence[MetricAlarmConfig],
        *,
        enabled: bool,
    ) -> bool:
        namespace = f"{ALARM_PREFIX}-{self.label}"
        group = resource_prefix(self.label, identifier).rstrip("-")
        rules: List[PrometheusRule] = []
        if enabled:
            rule_configs = [config for config in catalog if config.prometheus_expression]
            state = compute_desired(self.label, identifier, tags, [], rule_configs)
            for alarm in state.alarms:
                expression = alarm.config.prometheus_expression.format(resource=identifier)
                operator = PROMQL_OPERATORS[alarm.options.comparison_operator]
                rules.append(
                    PrometheusRule(
                        alert=alarm.name,
                        expr=f"{expression} {operator} {format_threshold(alarm.threshold)}",
                        duration=f"{alarm.options.period * alarm.options.data_points_to_alarm}s",
                        severity=alarm.classification.value.lower(),
                        annotations={
                            "summary": f"{alarm.config.metric_name} {alarm.classification.value} on {identifier}",
                        },
                    )
                )
        try:
            if not enabled:
                self.prometheus.remove(namespace, group)
                return False
            synced = self.prometheus.sync(namespace, group, rules)
        except (RetryableError, NonRetryableError) as exc:
            log_event(self.logger, "prometheus_sync_failed", instance_id=identifier, error=str(exc))
            return False
        if not synced:
            log_event(self.logger, "prometheus_fallback_to_cloudwatch", instance_id=identifier)
        return synced
