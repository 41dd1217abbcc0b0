"""Default alarm tables for every supported service.

Each entry names the tag suffix operators use to override it
(``autoalarm:<tag_key>``) and the options used when the tag is absent or a
field is left blank.
"""

from __future__ import annotations

from typing import Dict, Optional, Tuple

from auto_alarm.app.models.alarm import (
    ComparisonOperator,
    MetricAlarmConfig,
    MetricAlarmOptions,
    MissingDataTreatment,
)

Catalog = Tuple[MetricAlarmConfig, ...]


def _static(
    tag_key: str,
    metric_name: str,
    namespace: str,
    *,
    warning: Optional[float],
    critical: Optional[float],
    default_create: bool = False,
    period: int = 60,
    evaluation_periods: int = 5,
    data_points: int = 5,
    statistic: str = "Maximum",
    operator: ComparisonOperator = ComparisonOperator.GREATER_THAN,
    missing: MissingDataTreatment = MissingDataTreatment.IGNORE,
    prometheus: Optional[str] = None,
) -> MetricAlarmConfig:
    return MetricAlarmConfig(
        tag_key=tag_key,
        metric_name=metric_name,
        metric_namespace=namespace,
        default_create=default_create,
        anomaly=False,
        prometheus_expression=prometheus,
        defaults=MetricAlarmOptions(
            warning_threshold=warning,
            critical_threshold=critical,
            period=period,
            evaluation_periods=evaluation_periods,
            data_points_to_alarm=data_points,
            statistic=statistic,
            comparison_operator=operator,
            missing_data_treatment=missing,
        ),
    )


def _anomaly(
    tag_key: str,
    metric_name: str,
    namespace: str,
    *,
    warning: Optional[float] = 2,
    critical: Optional[float] = 3,
    default_create: bool = False,
    period: int = 300,
    evaluation_periods: int = 2,
    data_points: int = 2,
    statistic: str = "Average",
    operator: ComparisonOperator = ComparisonOperator.ABOVE_BAND,
) -> MetricAlarmConfig:
    return MetricAlarmConfig(
        tag_key=tag_key,
        metric_name=metric_name,
        metric_namespace=namespace,
        default_create=default_create,
        anomaly=True,
        defaults=MetricAlarmOptions(
            warning_threshold=warning,
            critical_threshold=critical,
            period=period,
            evaluation_periods=evaluation_periods,
            data_points_to_alarm=data_points,
            statistic=statistic,
            comparison_operator=operator,
            missing_data_treatment=MissingDataTreatment.IGNORE,
        ),
    )


EC2_CATALOG: Catalog = (
    _static(
        "cpu",
        "CPUUtilization",
        "AWS/EC2",
        warning=95,
        critical=98,
        default_create=True,
        prometheus='100 - (avg by (instance_id) (rate(node_cpu_seconds_total{{mode="idle", instance_id="{resource}"}}[5m])) * 100)',
    ),
    _anomaly("cpu-anomaly", "CPUUtilization", "AWS/EC2", statistic="p90"),
    _static(
        "memory",
        "mem_used_percent",
        "CWAgent",
        warning=90,
        critical=95,
        default_create=True,
        prometheus='100 * (1 - node_memory_MemAvailable_bytes{{instance_id="{resource}"}} / node_memory_MemTotal_bytes{{instance_id="{resource}"}})',
    ),
    _anomaly("memory-anomaly", "mem_used_percent", "CWAgent"),
    _static(
        "storage",
        "disk_used_percent",
        "CWAgent",
        warning=90,
        critical=95,
        default_create=True,
        evaluation_periods=2,
        data_points=1,
    ),
    _anomaly("network-in-anomaly", "NetworkIn", "AWS/EC2", statistic="Sum"),
    _anomaly("network-out-anomaly", "NetworkOut", "AWS/EC2", statistic="Sum"),
    _static(
        "status-check",
        "StatusCheckFailed",
        "AWS/EC2",
        warning=None,
        critical=1,
        default_create=True,
        evaluation_periods=2,
        data_points=2,
        operator=ComparisonOperator.GREATER_THAN_OR_EQUAL,
    ),
)

ALB_CATALOG: Catalog = (
    _static("request-count", "RequestCount", "AWS/ApplicationELB", warning=10000, critical=15000, statistic="Sum"),
    _anomaly("request-count-anomaly", "RequestCount", "AWS/ApplicationELB", statistic="Sum"),
    _static(
        "4xx-count",
        "HTTPCode_ELB_4XX_Count",
        "AWS/ApplicationELB",
        warning=100,
        critical=300,
        default_create=True,
        statistic="Sum",
        evaluation_periods=3,
        data_points=2,
    ),
    _anomaly("4xx-count-anomaly", "HTTPCode_ELB_4XX_Count", "AWS/ApplicationELB", statistic="Sum"),
    _static(
        "5xx-count",
        "HTTPCode_ELB_5XX_Count",
        "AWS/ApplicationELB",
        warning=10,
        critical=50,
        default_create=True,
        statistic="Sum",
        evaluation_periods=3,
        data_points=2,
    ),
    _anomaly("5xx-count-anomaly", "HTTPCode_ELB_5XX_Count", "AWS/ApplicationELB", statistic="Sum"),
)

TARGET_GROUP_CATALOG: Catalog = (
    _static(
        "unhealthy-host-count",
        "UnHealthyHostCount",
        "AWS/ApplicationELB",
        warning=1,
        critical=2,
        default_create=True,
        evaluation_periods=3,
        data_points=3,
        operator=ComparisonOperator.GREATER_THAN_OR_EQUAL,
    ),
    _static(
        "5xx-count",
        "HTTPCode_Target_5XX_Count",
        "AWS/ApplicationELB",
        warning=10,
        critical=50,
        default_create=True,
        statistic="Sum",
        evaluation_periods=3,
        data_points=2,
    ),
    _anomaly("5xx-count-anomaly", "HTTPCode_Target_5XX_Count", "AWS/ApplicationELB", statistic="Sum"),
    _static("response-time", "TargetResponseTime", "AWS/ApplicationELB", warning=3, critical=5, statistic="p90"),
    _anomaly("response-time-anomaly", "TargetResponseTime", "AWS/ApplicationELB", statistic="p90"),
    _anomaly("request-count-anomaly", "RequestCountPerTarget", "AWS/ApplicationELB", statistic="Sum"),
)

SQS_CATALOG: Catalog = (
    _static(
        "messages-visible",
        "ApproximateNumberOfMessagesVisible",
        "AWS/SQS",
        warning=500,
        critical=1000,
        period=300,
        evaluation_periods=1,
        data_points=1,
    ),
    _anomaly("messages-visible-anomaly", "ApproximateNumberOfMessagesVisible", "AWS/SQS"),
    _static(
        "age-of-oldest-message",
        "ApproximateAgeOfOldestMessage",
        "AWS/SQS",
        warning=600,
        critical=1200,
        default_create=True,
        period=300,
        evaluation_periods=1,
        data_points=1,
    ),
    _anomaly("age-of-oldest-message-anomaly", "ApproximateAgeOfOldestMessage", "AWS/SQS"),
    _anomaly("empty-receives-anomaly", "NumberOfEmptyReceives", "AWS/SQS", statistic="Sum"),
    _anomaly("messages-sent-anomaly", "NumberOfMessagesSent", "AWS/SQS", statistic="Sum"),
)

OPENSEARCH_CATALOG: Catalog = (
    _static(
        "cluster-red",
        "ClusterStatus.red",
        "AWS/ES",
        warning=None,
        critical=1,
        default_create=True,
        evaluation_periods=1,
        data_points=1,
        operator=ComparisonOperator.GREATER_THAN_OR_EQUAL,
    ),
    _static(
        "cluster-yellow",
        "ClusterStatus.yellow",
        "AWS/ES",
        warning=1,
        critical=None,
        default_create=True,
        evaluation_periods=1,
        data_points=1,
        operator=ComparisonOperator.GREATER_THAN_OR_EQUAL,
    ),
    _static(
        "storage",
        "FreeStorageSpace",
        "AWS/ES",
        warning=10000,
        critical=5000,
        default_create=True,
        statistic="Minimum",
        evaluation_periods=2,
        data_points=2,
        operator=ComparisonOperator.LESS_THAN_OR_EQUAL,
    ),
    _static("jvm-memory", "JVMMemoryPressure", "AWS/ES", warning=85, critical=92, default_create=True),
    _static("cpu", "CPUUtilization", "AWS/ES", warning=90, critical=95, default_create=True),
    _anomaly("search-latency-anomaly", "SearchLatency", "AWS/ES", statistic="p90"),
    _anomaly("index-latency-anomaly", "IndexingLatency", "AWS/ES", statistic="p90"),
)

RDS_CATALOG: Catalog = (
    _static("cpu", "CPUUtilization", "AWS/RDS", warning=90, critical=95, default_create=True),
    _anomaly("cpu-anomaly", "CPUUtilization", "AWS/RDS", statistic="p90"),
    _static(
        "freeable-memory",
        "FreeableMemory",
        "AWS/RDS",
        warning=536870912,
        critical=268435456,
        statistic="Minimum",
        operator=ComparisonOperator.LESS_THAN,
    ),
    _static(
        "free-storage",
        "FreeStorageSpace",
        "AWS/RDS",
        warning=10737418240,
        critical=5368709120,
        default_create=True,
        statistic="Minimum",
        operator=ComparisonOperator.LESS_THAN,
    ),
    _anomaly("db-connections-anomaly", "DatabaseConnections", "AWS/RDS"),
    _anomaly("write-latency-anomaly", "WriteLatency", "AWS/RDS", statistic="p90"),
    _anomaly("read-latency-anomaly", "ReadLatency", "AWS/RDS", statistic="p90"),
)

SFN_CATALOG: Catalog = (
    _static(
        "executions-failed",
        "ExecutionsFailed",
        "AWS/States",
        warning=1,
        critical=5,
        default_create=True,
        statistic="Sum",
        evaluation_periods=1,
        data_points=1,
        operator=ComparisonOperator.GREATER_THAN_OR_EQUAL,
        missing=MissingDataTreatment.NOT_BREACHING,
    ),
    _static(
        "executions-timed-out",
        "ExecutionsTimedOut",
        "AWS/States",
        warning=1,
        critical=5,
        statistic="Sum",
        evaluation_periods=1,
        data_points=1,
        operator=ComparisonOperator.GREATER_THAN_OR_EQUAL,
        missing=MissingDataTreatment.NOT_BREACHING,
    ),
    _anomaly("executions-started-anomaly", "ExecutionsStarted", "AWS/States", statistic="Sum"),
    _anomaly("execution-time-anomaly", "ExecutionTime", "AWS/States", statistic="p90"),
)

CLOUDFRONT_CATALOG: Catalog = (
    _static("4xx-error-rate", "4xxErrorRate", "AWS/CloudFront", warning=5, critical=10, statistic="Average"),
    _static(
        "5xx-error-rate",
        "5xxErrorRate",
        "AWS/CloudFront",
        warning=1,
        critical=5,
        default_create=True,
        statistic="Average",
        evaluation_periods=3,
        data_points=2,
    ),
    _anomaly("requests-anomaly", "Requests", "AWS/CloudFront", statistic="Sum"),
    _anomaly("origin-latency-anomaly", "OriginLatency", "AWS/CloudFront", statistic="p90"),
)

SERVICE_CATALOGS: Dict[str, Catalog] = {
    "ec2": EC2_CATALOG,
    "alb": ALB_CATALOG,
    "targetgroup": TARGET_GROUP_CATALOG,
    "sqs": SQS_CATALOG,
    "opensearch": OPENSEARCH_CATALOG,
    "rds": RDS_CATALOG,
    "sfn": SFN_CATALOG,
    "cloudfront": CLOUDFRONT_CATALOG,
}
