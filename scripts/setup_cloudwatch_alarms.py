#!/usr/bin/env python
"""Create the alarms that watch AutoAlarm's own worker.

Each entry of the table below becomes one ``PutMetricAlarm`` call on the
metrics the worker publishes (see ``auto_alarm.util.metrics``), plus an
optional backlog alarm on the event queue.
"""

from __future__ import annotations

import argparse
import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import boto3

from auto_alarm.engine.reconcile.naming import ALARM_PREFIX
from auto_alarm.util.metrics import DEFAULT_NAMESPACE, RECONCILE_FAILED, THROTTLE_RETRIES, WORKER_ERROR

SQS_NAMESPACE = "AWS/SQS"


@dataclass(frozen=True)
class OpsAlarm:
    suffix: str
    description: str
    metric_name: str
    statistic: str
    threshold: float
    evaluation_periods: int = 1
    namespace: Optional[str] = None
    dimensions: Tuple[Tuple[str, str], ...] = ()


def ops_alarms(args: argparse.Namespace) -> List[OpsAlarm]:
    failure_dimensions = (("service", args.service),) if args.service else ()
    alarms = [
        OpsAlarm(
            suffix=f"{args.service}-consecutive-reconcile-failures" if args.service else "consecutive-reconcile-failures",
            description="Reconciliations kept failing to update alarms (1 per failed pass, 0 per clean pass).",
            metric_name=RECONCILE_FAILED,
            statistic="Maximum",
            threshold=1,
            evaluation_periods=args.failure_periods,
            dimensions=failure_dimensions,
        ),
        OpsAlarm(
            suffix="worker-error-rate",
            description="Worker errors, including alarm index write failures.",
            metric_name=WORKER_ERROR,
            statistic="Sum",
            threshold=args.worker_error_threshold,
        ),
        OpsAlarm(
            suffix="backend-throttling",
            description="CloudWatch calls keep getting throttled and retried.",
            metric_name=THROTTLE_RETRIES,
            statistic="Sum",
            threshold=args.throttle_threshold,
        ),
    ]
    if args.sqs_queue_name:
        alarms.append(
            OpsAlarm(
                suffix="queue-backlog",
                description="Tag and state change events are piling up on the event queue.",
                metric_name="ApproximateNumberOfMessagesVisible",
                statistic="Average",
                threshold=args.queue_depth_threshold,
                evaluation_periods=3,
                namespace=SQS_NAMESPACE,
                dimensions=(("QueueName", args.sqs_queue_name),),
            )
        )
    return alarms


def put_request(
    alarm: OpsAlarm,
    *,
    prefix: str,
    namespace: str,
    period: int,
    actions: List[str],
) -> Dict[str, Any]:
    return {
        "AlarmName": f"{prefix}-{alarm.suffix}",
        "AlarmDescription": alarm.description,
        "Namespace": alarm.namespace or namespace,
        "MetricName": alarm.metric_name,
        "Dimensions": [{"Name": name, "Value": value} for name, value in alarm.dimensions],
        "Statistic": alarm.statistic,
        "Period": period,
        "EvaluationPeriods": alarm.evaluation_periods,
        "DatapointsToAlarm": alarm.evaluation_periods,
        "Threshold": alarm.threshold,
        "ComparisonOperator": "GreaterThanOrEqualToThreshold",
        "TreatMissingData": "notBreaching",
        "AlarmActions": actions,
        "OKActions": actions,
    }


def main() -> None:
    parser = argparse.ArgumentParser(description="Create CloudWatch alarms that watch AutoAlarm itself")
    parser.add_argument("--alarm-prefix", default="autoalarm-ops", help="Alarm name prefix")
    parser.add_argument("--namespace", default=DEFAULT_NAMESPACE, help="Namespace the worker publishes to")
    parser.add_argument("--sns-topic-arn", help="SNS topic notified on ALARM and OK")
    parser.add_argument("--service", help="Watch reconcile failures of one service label (EC2, SQS, ...)")
    parser.add_argument("--sqs-queue-name", help="Event queue to watch for backlog")
    parser.add_argument("--period", type=int, default=300, help="Period in seconds for every alarm")
    parser.add_argument("--failure-periods", type=int, default=3, help="Failed periods in a row before alarming")
    parser.add_argument("--worker-error-threshold", type=int, default=5)
    parser.add_argument("--throttle-threshold", type=int, default=50)
    parser.add_argument("--queue-depth-threshold", type=int, default=100)
    parser.add_argument("--dry-run", action="store_true", help="Print the requests instead of creating alarms")
    args = parser.parse_args()

    # Names under the managed prefix would be pruned by the reconciler.
    if args.alarm_prefix.startswith(f"{ALARM_PREFIX}-"):
        parser.error(f"--alarm-prefix must not start with {ALARM_PREFIX}-")

    actions = [args.sns_topic_arn] if args.sns_topic_arn else []
    requests = [
        put_request(alarm, prefix=args.alarm_prefix, namespace=args.namespace, period=args.period, actions=actions)
        for alarm in ops_alarms(args)
    ]
    if args.dry_run:
        print(json.dumps(requests, indent=2))
        return

    cloudwatch = boto3.client("cloudwatch")
    for request in requests:
        cloudwatch.put_metric_alarm(**request)
        print(f"created {request['AlarmName']}")


if __name__ == "__main__":
    main()
