from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set

from auto_alarm.app.models.alarm import (
    ENABLED_TAG,
    AlarmClassification,
    Dimension,
    MetricAlarmConfig,
    MetricAlarmOptions,
    MetricTarget,
)
from auto_alarm.adapters.alarms.cloudwatch import CloudWatchAlarmBackend
from auto_alarm.engine.options.resolver import format_threshold, normalize_period, resolve
from auto_alarm.engine.reconcile.naming import build_alarm_name, owned_by_resource, resource_prefix
from auto_alarm.engine.statistics.parser import is_extended_statistic
from auto_alarm.util.errors import NonRetryableError, PruneError, RetryableError
from auto_alarm.util.logging import get_logger, log_event

ANOMALY_BAND_ID = "ad1"
RAW_SERIES_ID = "m1"


@dataclass(frozen=True)
class DesiredAlarm:
    name: str
    config: MetricAlarmConfig
    classification: AlarmClassification
    options: MetricAlarmOptions
    threshold: float
    target: MetricTarget


@dataclass
class DesiredState:
    enabled: bool
    alarms: List[DesiredAlarm] = field(default_factory=list)
    disabled: List[str] = field(default_factory=list)
    preserved: Set[str] = field(default_factory=set)

    @property
    def names(self) -> Set[str]:
        return {alarm.name for alarm in self.alarms}


@dataclass
class ReconcileResult:
    kept: Set[str]
    deleted: List[str]
    failures: List[Dict[str, str]] = field(default_factory=list)


def catalog_metric_names(catalog: Iterable[MetricAlarmConfig]) -> Set[str]:
    return {config.metric_name for config in catalog}


def _dimensions_api(dimensions: Iterable[Dimension]) -> List[Dict[str, str]]:
    return [dimension.to_api() for dimension in dimensions]


def _sorted_dimensions(dimensions: Optional[Iterable[Dict[str, str]]]) -> List[tuple]:
    return sorted((item["Name"], item["Value"]) for item in dimensions or [])


def compute_desired(
    service: str,
    resource_identifier: str,
    tags: Mapping[str, str],
    dimensions: Sequence[Dimension],
    catalog: Sequence[MetricAlarmConfig],
    targets: Optional[Mapping[str, Optional[List[MetricTarget]]]] = None,
) -> DesiredState:
    """Work out which alarms should exist for a resource, without touching the backend.

    A target entry of ``None`` means the targets of that metric could not be
    listed; its metric name is recorded in ``preserved`` and no alarms are
    computed for it.
    """
    if tags.get(ENABLED_TAG) != "true":
        return DesiredState(enabled=False)

    state = DesiredState(enabled=True)
    for config in catalog:
        override = tags.get(config.tag_name)
        if override is None and not config.default_create:
            continue
        resolved = resolve(override, config.defaults)
        options = resolved.model_copy(update={"period": normalize_period(resolved.period)})
        if targets is not None and config.tag_key in targets:
            # An empty list means the metric has nothing to alarm on yet.
            metric_targets = targets[config.tag_key]
            if metric_targets is None:
                state.preserved.add(config.metric_name)
                continue
        else:
            metric_targets = [MetricTarget(dimensions=list(dimensions))]
        for target in metric_targets:
            for classification in AlarmClassification:
                name = build_alarm_name(
                    service,
                    resource_identifier,
                    config.metric_name,
                    classification,
                    variant=config.variant,
                    discriminator=target.discriminator,
                )
                threshold = options.threshold_for(classification)
                if threshold is None:
                    state.disabled.append(name)
                    continue
                state.alarms.append(
                    DesiredAlarm(
                        name=name,
                        config=config,
                        classification=classification,
                        options=options,
                        threshold=threshold,
                        target=target,
                    )
                )
    return state


def build_static_request(service: str, resource_identifier: str, alarm: DesiredAlarm) -> Dict[str, Any]:
    options = alarm.options
    request: Dict[str, Any] = {
        "AlarmName": alarm.name,
        "AlarmDescription": (
            f"AutoAlarm {alarm.classification.value} alarm for {service} {resource_identifier} "
            f"{alarm.config.metric_name}"
        ),
        "ComparisonOperator": options.comparison_operator.value,
        "EvaluationPeriods": options.evaluation_periods,
        "DatapointsToAlarm": options.data_points_to_alarm,
        "MetricName": alarm.config.metric_name,
        "Namespace": alarm.config.metric_namespace,
        "Period": options.period,
        "Threshold": alarm.threshold,
        "Dimensions": _dimensions_api(alarm.target.dimensions),
        "TreatMissingData": options.missing_data_treatment.value,
        "Tags": _alarm_tags(service, resource_identifier),
    }
    if is_extended_statistic(options.statistic):
        request["ExtendedStatistic"] = options.statistic
    else:
        request["Statistic"] = options.statistic
    return request


def build_anomaly_detector_request(alarm: DesiredAlarm, *, timezone: str) -> Dict[str, Any]:
    return {
        "SingleMetricAnomalyDetector": {
            "Namespace": alarm.config.metric_namespace,
            "MetricName": alarm.config.metric_name,
            "Dimensions": _dimensions_api(alarm.target.dimensions),
            "Stat": alarm.options.statistic,
        },
        "Configuration": {"MetricTimezone": timezone},
    }


def build_anomaly_request(service: str, resource_identifier: str, alarm: DesiredAlarm) -> Dict[str, Any]:
    options = alarm.options
    return {
        "AlarmName": alarm.name,
        "AlarmDescription": (
            f"AutoAlarm {alarm.classification.value} anomaly alarm for {service} {resource_identifier} "
            f"{alarm.config.metric_name}"
        ),
        "ComparisonOperator": options.comparison_operator.value,
        "EvaluationPeriods": options.evaluation_periods,
        "DatapointsToAlarm": options.data_points_to_alarm,
        "TreatMissingData": options.missing_data_treatment.value,
        "ThresholdMetricId": ANOMALY_BAND_ID,
        "Metrics": [
            {
                "Id": RAW_SERIES_ID,
                "ReturnData": True,
                "MetricStat": {
                    "Metric": {
                        "Namespace": alarm.config.metric_namespace,
                        "MetricName": alarm.config.metric_name,
                        "Dimensions": _dimensions_api(alarm.target.dimensions),
                    },
                    "Period": options.period,
                    "Stat": options.statistic,
                },
            },
            {
                "Id": ANOMALY_BAND_ID,
                "Expression": f"ANOMALY_DETECTION_BAND({RAW_SERIES_ID}, {format_threshold(alarm.threshold)})",
                "Label": f"{alarm.config.metric_name} (expected)",
                "ReturnData": True,
            },
        ],
        "Tags": _alarm_tags(service, resource_identifier),
    }


def _alarm_tags(service: str, resource_identifier: str) -> List[Dict[str, str]]:
    return [
        {"Key": "autoalarm:managed", "Value": "true"},
        {"Key": "autoalarm:service", "Value": service},
        {"Key": "autoalarm:resource", "Value": resource_identifier},
    ]


def _metric_signature(metric: Mapping[str, Any]) -> tuple:
    stat = metric.get("MetricStat") or {}
    inner = stat.get("Metric") or {}
    return (
        metric.get("Id"),
        metric.get("Expression"),
        inner.get("Namespace"),
        inner.get("MetricName"),
        tuple(_sorted_dimensions(inner.get("Dimensions"))),
        stat.get("Period"),
        stat.get("Stat"),
    )


_COMMON_FIELDS = ("ComparisonOperator", "EvaluationPeriods", "DatapointsToAlarm", "TreatMissingData")
_STATIC_FIELDS = _COMMON_FIELDS + ("MetricName", "Namespace", "Period", "Statistic", "ExtendedStatistic")


def alarm_matches(existing: Mapping[str, Any], request: Mapping[str, Any]) -> bool:
    """True when an alarm described by the backend already has the requested settings."""
    if "Metrics" in request:
        if any(existing.get(key) != request.get(key) for key in _COMMON_FIELDS):
            return False
        if existing.get("ThresholdMetricId") != request["ThresholdMetricId"]:
            return False
        wanted = sorted(_metric_signature(metric) for metric in request["Metrics"])
        current = sorted(_metric_signature(metric) for metric in existing.get("Metrics") or [])
        return wanted == current
    if any(existing.get(key) != request.get(key) for key in _STATIC_FIELDS):
        return False
    if existing.get("Threshold") is None or float(existing["Threshold"]) != float(request["Threshold"]):
        return False
    return _sorted_dimensions(existing.get("Dimensions")) == _sorted_dimensions(request["Dimensions"])


class ReconciliationEngine:
    def __init__(self, backend: CloudWatchAlarmBackend, *, anomaly_timezone: str = "UTC") -> None:
        self.backend = backend
        self.anomaly_timezone = anomaly_timezone
        self.logger = get_logger(self.__class__.__name__)

    def discover(
        self,
        service: str,
        resource_identifier: str,
        metric_names: Iterable[str],
    ) -> Dict[str, Dict[str, Any]]:
        """Alarms of this resource, keyed by name.

        Names under the resource prefix that do not continue with one of
        ``metric_names`` belong to another resource whose identifier extends
        this one and are left out.
        """
        prefix = resource_prefix(service, resource_identifier)
        try:
            alarms = self.backend.describe_alarms_with_prefix(prefix)
        except (RetryableError, NonRetryableError) as exc:
            raise PruneError(f"could not discover alarms under {prefix}: {exc}") from exc
        metric_names = set(metric_names)
        return {
            alarm["AlarmName"]: alarm
            for alarm in alarms
            if alarm.get("AlarmName")
            and owned_by_resource(alarm["AlarmName"], service, resource_identifier, metric_names)
        }

    def reconcile(
        self,
        service: str,
        resource_identifier: str,
        tags: Mapping[str, str],
        dimensions: Sequence[Dimension],
        catalog: Sequence[MetricAlarmConfig],
        targets: Optional[Mapping[str, Optional[List[MetricTarget]]]] = None,
        *,
        metric_names: Optional[Iterable[str]] = None,
    ) -> Set[str]:
        """Converge the alarms of one resource and return the names that should remain.

        A resource that is not enabled has every discovered alarm deleted here.
        Otherwise stale alarms are left in place; pass the returned set to
        :meth:`prune` to remove them.
        """
        names = catalog_metric_names(catalog) if metric_names is None else set(metric_names)
        existing = self.discover(service, resource_identifier, names)
        state = compute_desired(service, resource_identifier, tags, dimensions, catalog, targets)
        if not state.enabled:
            self.prune(service, resource_identifier, set(), existing=existing)
            return set()
        result = self.apply(service, resource_identifier, state, existing)
        self._keep_preserved(service, resource_identifier, state, existing, result)
        return result.kept

    def reconcile_resource(
        self,
        service: str,
        resource_identifier: str,
        tags: Mapping[str, str],
        dimensions: Sequence[Dimension],
        catalog: Sequence[MetricAlarmConfig],
        targets: Optional[Mapping[str, Optional[List[MetricTarget]]]] = None,
        *,
        metric_names: Optional[Iterable[str]] = None,
    ) -> ReconcileResult:
        """Converge the alarms of one resource and delete the ones no longer wanted.

        ``metric_names`` selects which discovered alarms are owned by the
        resource and defaults to the metrics of ``catalog``.
        """
        names = catalog_metric_names(catalog) if metric_names is None else set(metric_names)
        existing = self.discover(service, resource_identifier, names)
        state = compute_desired(service, resource_identifier, tags, dimensions, catalog, targets)
        if state.enabled:
            result = self.apply(service, resource_identifier, state, existing)
        else:
            log_event(self.logger, "resource_disabled", service=service, resource=resource_identifier)
            result = ReconcileResult(kept=set(), deleted=[])
        remaining = {name: alarm for name, alarm in existing.items() if name not in result.deleted}
        self._keep_preserved(service, resource_identifier, state, remaining, result)
        result.deleted.extend(self.prune(service, resource_identifier, result.kept, existing=remaining))
        return result

    def _keep_preserved(
        self,
        service: str,
        resource_identifier: str,
        state: DesiredState,
        existing: Mapping[str, Any],
        result: ReconcileResult,
    ) -> None:
        if not state.preserved:
            return
        # Alarms of metrics whose targets are unknown stay as they are until a later pass.
        result.kept.update(
            name for name in existing if owned_by_resource(name, service, resource_identifier, state.preserved)
        )
        for metric_name in sorted(state.preserved):
            result.failures.append({"metric": metric_name, "error": "metric targets could not be listed"})

    def apply(
        self,
        service: str,
        resource_identifier: str,
        state: DesiredState,
        existing: Mapping[str, Mapping[str, Any]],
    ) -> ReconcileResult:
        result = ReconcileResult(kept=set(), deleted=[])
        for alarm in state.alarms:
            result.kept.add(alarm.name)
            try:
                self._upsert(service, resource_identifier, alarm, existing.get(alarm.name))
            except (RetryableError, NonRetryableError) as exc:
                result.failures.append({"alarm": alarm.name, "error": str(exc)})
                log_event(
                    self.logger,
                    "alarm_upsert_failed",
                    service=service,
                    resource=resource_identifier,
                    alarm=alarm.name,
                    error=str(exc),
                )
        for name in state.disabled:
            if name not in existing:
                continue
            try:
                self.backend.delete_alarms([name])
                result.deleted.append(name)
                log_event(self.logger, "alarm_threshold_removed", alarm=name, resource=resource_identifier)
            except (RetryableError, NonRetryableError) as exc:
                result.failures.append({"alarm": name, "error": str(exc)})
                log_event(self.logger, "alarm_delete_failed", alarm=name, error=str(exc))
        return result

    def _upsert(
        self,
        service: str,
        resource_identifier: str,
        alarm: DesiredAlarm,
        current: Optional[Mapping[str, Any]],
    ) -> None:
        if alarm.config.anomaly:
            request = build_anomaly_request(service, resource_identifier, alarm)
        else:
            request = build_static_request(service, resource_identifier, alarm)
        if current is not None and alarm_matches(current, request):
            log_event(self.logger, "alarm_unchanged", alarm=alarm.name)
            return
        if alarm.config.anomaly:
            self.backend.put_anomaly_detector(
                build_anomaly_detector_request(alarm, timezone=self.anomaly_timezone)
            )
        self.backend.put_metric_alarm(request)
        log_event(
            self.logger,
            "alarm_upserted",
            alarm=alarm.name,
            created=current is None,
            threshold=alarm.threshold,
            period=alarm.options.period,
            evaluation_periods=alarm.options.evaluation_periods,
            statistic=alarm.options.statistic,
        )

    def prune(
        self,
        service: str,
        resource_identifier: str,
        desired: Set[str],
        *,
        metric_names: Iterable[str] = (),
        existing: Optional[Mapping[str, Any]] = None,
    ) -> List[str]:
        """Delete every alarm of the resource that is not in ``desired``.

        Without ``existing`` the alarms are discovered first, restricted to
        ``metric_names``.
        """
        if existing is None:
            existing = self.discover(service, resource_identifier, metric_names)
        stale = sorted(name for name in existing if name not in desired)
        if not stale:
            return []
        try:
            self.backend.delete_alarms(stale)
        except (RetryableError, NonRetryableError) as exc:
            raise PruneError(f"failed to delete stale alarms {stale}: {exc}") from exc
        log_event(self.logger, "alarms_pruned", service=service, resource=resource_identifier, alarms=stale)
        return stale
