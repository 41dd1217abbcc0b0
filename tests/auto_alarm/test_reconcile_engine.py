import pytest

from auto_alarm.app.models.alarm import (
    AlarmClassification,
    AlarmVariant,
    ComparisonOperator,
    Dimension,
    MetricAlarmConfig,
    MetricAlarmOptions,
    MetricTarget,
)
from auto_alarm.engine.options.resolver import format_threshold
from auto_alarm.engine.reconcile.engine import ReconciliationEngine, compute_desired
from auto_alarm.engine.reconcile.naming import build_alarm_name, resource_prefix
from auto_alarm.util.errors import PruneError

DIMENSIONS = [Dimension(name="InstanceId", value="i-0abc")]

CPU = MetricAlarmConfig(
    tag_key="cpu",
    metric_name="CPUUtilization",
    metric_namespace="AWS/EC2",
    default_create=True,
    defaults=MetricAlarmOptions(
        warning_threshold=95,
        critical_threshold=98,
        period=60,
        evaluation_periods=5,
        data_points_to_alarm=5,
        statistic="Maximum",
        comparison_operator=ComparisonOperator.GREATER_THAN,
    ),
)
MEMORY = MetricAlarmConfig(
    tag_key="memory",
    metric_name="mem_used_percent",
    metric_namespace="CWAgent",
    default_create=False,
    defaults=MetricAlarmOptions(warning_threshold=80, critical_threshold=95, period=300, evaluation_periods=1, data_points_to_alarm=1),
)
CPU_ANOMALY = MetricAlarmConfig(
    tag_key="cpu-anomaly",
    metric_name="CPUUtilization",
    metric_namespace="AWS/EC2",
    anomaly=True,
    defaults=MetricAlarmOptions(
        warning_threshold=2,
        critical_threshold=3,
        period=300,
        evaluation_periods=2,
        data_points_to_alarm=2,
        statistic="p90",
        comparison_operator=ComparisonOperator.ABOVE_BAND,
    ),
)
CATALOG = (CPU, MEMORY, CPU_ANOMALY)
ENABLED = {"autoalarm:enabled": "true"}


def _name(metric: str, classification: AlarmClassification, **kwargs) -> str:
    return build_alarm_name("EC2", "i-0abc", metric, classification, **kwargs)


def test_alarm_names_and_prefix() -> None:
    assert resource_prefix("EC2", "i-0abc") == "AutoAlarm-EC2-i-0abc-"
    assert _name("CPUUtilization", AlarmClassification.WARNING) == "AutoAlarm-EC2-i-0abc-CPUUtilization-Warning"
    assert (
        _name("disk_used_percent", AlarmClassification.CRITICAL, discriminator="/var", variant=AlarmVariant.ANOMALY)
        == "AutoAlarm-EC2-i-0abc-disk_used_percent-/var-anomaly-Critical"
    )


def test_default_create_builds_two_static_alarms(fake_backend) -> None:
    engine = ReconciliationEngine(fake_backend)

    kept = engine.reconcile("EC2", "i-0abc", ENABLED, DIMENSIONS, CATALOG)

    warning = _name("CPUUtilization", AlarmClassification.WARNING)
    critical = _name("CPUUtilization", AlarmClassification.CRITICAL)
    assert kept == {warning, critical}
    assert fake_backend.alarms[warning]["Threshold"] == 95
    assert fake_backend.alarms[critical]["Threshold"] == 98
    assert fake_backend.alarms[warning]["Statistic"] == "Maximum"
    assert "ExtendedStatistic" not in fake_backend.alarms[warning]
    assert fake_backend.alarms[warning]["Dimensions"] == [{"Name": "InstanceId", "Value": "i-0abc"}]


def test_disabled_resource_deletes_everything(fake_backend) -> None:
    fake_backend.seed(_name("CPUUtilization", AlarmClassification.WARNING))
    fake_backend.seed(_name("mem_used_percent", AlarmClassification.CRITICAL))
    fake_backend.seed("AutoAlarm-EC2-i-0abcdef-CPUUtilization-Warning")
    engine = ReconciliationEngine(fake_backend)

    kept = engine.reconcile("EC2", "i-0abc", {"autoalarm:enabled": "false"}, DIMENSIONS, CATALOG)

    assert kept == set()
    assert list(fake_backend.alarms) == ["AutoAlarm-EC2-i-0abcdef-CPUUtilization-Warning"]
    assert fake_backend.put_calls == []


def test_dash_override_removes_warning_and_keeps_critical(fake_backend) -> None:
    warning = _name("mem_used_percent", AlarmClassification.WARNING)
    critical = _name("mem_used_percent", AlarmClassification.CRITICAL)
    fake_backend.seed(warning, Threshold=80)
    engine = ReconciliationEngine(fake_backend)
    tags = {**ENABLED, "autoalarm:memory": "-/90/60/2"}

    result = engine.reconcile_resource("EC2", "i-0abc", tags, DIMENSIONS, CATALOG)

    assert warning not in result.kept
    assert warning not in fake_backend.alarms
    alarm = fake_backend.alarms[critical]
    assert alarm["Threshold"] == 90
    assert alarm["Period"] == 60
    assert alarm["EvaluationPeriods"] == 2
    assert alarm["DatapointsToAlarm"] == 1


def test_reconcile_twice_is_idempotent(fake_backend) -> None:
    engine = ReconciliationEngine(fake_backend)
    tags = {**ENABLED, "autoalarm:memory": "70/90/45", "autoalarm:cpu-anomaly": "2/3/300/2/p90"}

    first = engine.reconcile_resource("EC2", "i-0abc", tags, DIMENSIONS, CATALOG)
    mutations = fake_backend.mutation_count
    second = engine.reconcile_resource("EC2", "i-0abc", tags, DIMENSIONS, CATALOG)

    assert first.kept == second.kept
    assert fake_backend.mutation_count == mutations
    assert second.deleted == []


def test_changed_threshold_updates_only_that_alarm(fake_backend) -> None:
    engine = ReconciliationEngine(fake_backend)
    engine.reconcile_resource("EC2", "i-0abc", ENABLED, DIMENSIONS, CATALOG)
    fake_backend.put_calls.clear()

    engine.reconcile_resource("EC2", "i-0abc", {**ENABLED, "autoalarm:cpu": "90"}, DIMENSIONS, CATALOG)

    assert fake_backend.put_calls == [_name("CPUUtilization", AlarmClassification.WARNING)]


def test_anomaly_alarm_uses_detector_and_band(fake_backend) -> None:
    engine = ReconciliationEngine(fake_backend, anomaly_timezone="America/Chicago")
    tags = {**ENABLED, "autoalarm:cpu-anomaly": "-/4"}

    kept = engine.reconcile("EC2", "i-0abc", tags, DIMENSIONS, CATALOG)

    name = _name("CPUUtilization", AlarmClassification.CRITICAL, variant=AlarmVariant.ANOMALY)
    assert name in kept
    detector = fake_backend.detectors[0]
    assert detector["SingleMetricAnomalyDetector"]["Stat"] == "p90"
    assert detector["Configuration"] == {"MetricTimezone": "America/Chicago"}
    alarm = fake_backend.alarms[name]
    assert alarm["ThresholdMetricId"] == "ad1"
    assert alarm["ComparisonOperator"] == "GreaterThanUpperThreshold"
    band = next(metric for metric in alarm["Metrics"] if metric["Id"] == "ad1")
    assert band["Expression"] == "ANOMALY_DETECTION_BAND(m1, 4)"
    raw = next(metric for metric in alarm["Metrics"] if metric["Id"] == "m1")
    assert raw["MetricStat"]["Stat"] == "p90"
    assert "Threshold" not in alarm


def test_extended_statistic_goes_to_extended_field(fake_backend) -> None:
    engine = ReconciliationEngine(fake_backend)

    engine.reconcile("EC2", "i-0abc", {**ENABLED, "autoalarm:cpu": "//60/5/tm(10%:90%)"}, DIMENSIONS, CATALOG)

    alarm = fake_backend.alarms[_name("CPUUtilization", AlarmClassification.WARNING)]
    assert alarm["ExtendedStatistic"] == "TM(10%:90%)"
    assert "Statistic" not in alarm


def test_failed_metric_does_not_stop_the_others(fake_backend) -> None:
    failing = _name("CPUUtilization", AlarmClassification.WARNING)
    fake_backend.fail_puts.add(failing)
    engine = ReconciliationEngine(fake_backend)
    tags = {**ENABLED, "autoalarm:memory": "70/90"}

    result = engine.reconcile_resource("EC2", "i-0abc", tags, DIMENSIONS, CATALOG)

    assert [failure["alarm"] for failure in result.failures] == [failing]
    assert _name("CPUUtilization", AlarmClassification.CRITICAL) in fake_backend.alarms
    assert _name("mem_used_percent", AlarmClassification.WARNING) in fake_backend.alarms
    assert failing in result.kept


def test_prune_deletes_stale_alarms(fake_backend) -> None:
    stale = _name("mem_used_percent", AlarmClassification.WARNING)
    fake_backend.seed(stale)
    engine = ReconciliationEngine(fake_backend)

    result = engine.reconcile_resource("EC2", "i-0abc", ENABLED, DIMENSIONS, CATALOG)

    assert result.deleted == [stale]
    assert stale not in fake_backend.alarms


def test_prune_failure_propagates(fake_backend) -> None:
    fake_backend.seed(_name("mem_used_percent", AlarmClassification.WARNING))
    fake_backend.fail_deletes = True
    engine = ReconciliationEngine(fake_backend)

    with pytest.raises(PruneError):
        engine.prune("EC2", "i-0abc", set(), metric_names={"mem_used_percent"})


def test_compute_desired_fans_out_targets() -> None:
    targets = {
        "cpu": [
            MetricTarget(dimensions=DIMENSIONS, discriminator="a"),
            MetricTarget(dimensions=DIMENSIONS, discriminator="b"),
        ],
        "memory": [],
    }

    state = compute_desired("EC2", "i-0abc", ENABLED, DIMENSIONS, CATALOG, targets)

    assert sorted(state.names) == [
        "AutoAlarm-EC2-i-0abc-CPUUtilization-a-Critical",
        "AutoAlarm-EC2-i-0abc-CPUUtilization-a-Warning",
        "AutoAlarm-EC2-i-0abc-CPUUtilization-b-Critical",
        "AutoAlarm-EC2-i-0abc-CPUUtilization-b-Warning",
    ]


def test_compute_desired_without_enabled_tag_is_disabled() -> None:
    state = compute_desired("EC2", "i-0abc", {}, DIMENSIONS, CATALOG)

    assert not state.enabled
    assert state.alarms == []


def test_discovery_ignores_resources_sharing_the_prefix(fake_backend) -> None:
    sibling = "AutoAlarm-SQS-orders-dlq-ApproximateNumberOfMessagesVisible-Warning"
    own = "AutoAlarm-SQS-orders-ApproximateNumberOfMessagesVisible-Warning"
    fake_backend.seed(sibling)
    fake_backend.seed(own)
    engine = ReconciliationEngine(fake_backend)

    assert list(engine.discover("SQS", "orders", {"ApproximateNumberOfMessagesVisible"})) == [own]

    deleted = engine.prune("SQS", "orders", set(), metric_names={"ApproximateNumberOfMessagesVisible"})

    assert deleted == [own]
    assert list(fake_backend.alarms) == [sibling]


def test_disabling_a_resource_keeps_alarms_of_a_longer_sibling(fake_backend) -> None:
    sibling = "AutoAlarm-EC2-i-0abc-dev-CPUUtilization-Warning"
    fake_backend.seed(sibling)
    fake_backend.seed(_name("CPUUtilization", AlarmClassification.WARNING))

    result = ReconciliationEngine(fake_backend).reconcile_resource(
        "EC2", "i-0abc", {"autoalarm:enabled": "false"}, DIMENSIONS, CATALOG
    )

    assert result.deleted == [_name("CPUUtilization", AlarmClassification.WARNING)]
    assert list(fake_backend.alarms) == [sibling]


def test_unlisted_targets_preserve_existing_alarms(fake_backend) -> None:
    memory = _name("mem_used_percent", AlarmClassification.WARNING, discriminator="/var")
    fake_backend.seed(memory)
    engine = ReconciliationEngine(fake_backend)
    tags = {**ENABLED, "autoalarm:memory": "70/90"}

    result = engine.reconcile_resource("EC2", "i-0abc", tags, DIMENSIONS, CATALOG, {"memory": None})

    assert memory in fake_backend.alarms
    assert memory in result.kept
    assert result.deleted == []
    assert result.failures == [{"metric": "mem_used_percent", "error": "metric targets could not be listed"}]
    assert _name("CPUUtilization", AlarmClassification.WARNING) in fake_backend.alarms


def test_compute_desired_records_unlisted_targets() -> None:
    state = compute_desired("EC2", "i-0abc", {**ENABLED, "autoalarm:memory": "70/90"}, DIMENSIONS, CATALOG, {"memory": None})

    assert state.preserved == {"mem_used_percent"}
    assert not any(name.startswith("AutoAlarm-EC2-i-0abc-mem_used_percent") for name in state.names)


def test_large_anomaly_threshold_keeps_every_digit(fake_backend) -> None:
    engine = ReconciliationEngine(fake_backend)

    engine.reconcile("EC2", "i-0abc", {**ENABLED, "autoalarm:cpu-anomaly": "-/1234567"}, DIMENSIONS, CATALOG)

    alarm = fake_backend.alarms[_name("CPUUtilization", AlarmClassification.CRITICAL, variant=AlarmVariant.ANOMALY)]
    band = next(metric for metric in alarm["Metrics"] if metric["Id"] == "ad1")
    assert band["Expression"] == "ANOMALY_DETECTION_BAND(m1, 1234567)"


@pytest.mark.parametrize(
    ("value", "expected"),
    [(1234567, "1234567"), (1234567.0, "1234567"), (1.5, "1.5"), (0.1, "0.1"), (12345678.25, "12345678.25")],
)
def test_format_threshold(value, expected) -> None:
    assert format_threshold(value) == expected
