from __future__ import annotations

from typing import Any, Dict, Iterator, List, Optional, Sequence

import boto3

from auto_alarm.engine.retry.executor import RetryExecutor

DELETE_BATCH_SIZE = 100


class CloudWatchAlarmBackend:
    def __init__(self, *, executor: Optional[RetryExecutor] = None, client: Any = None) -> None:
        self.client = client or boto3.client("cloudwatch")
        self.executor = executor or RetryExecutor()

    def describe_alarms_with_prefix(self, prefix: str) -> List[Dict[str, Any]]:
        alarms: List[Dict[str, Any]] = []
        next_token: Optional[str] = None
        while True:
            request: Dict[str, Any] = {"AlarmNamePrefix": prefix, "AlarmTypes": ["MetricAlarm"]}
            if next_token:
                request["NextToken"] = next_token
            response = self.executor.call("DescribeAlarms", self.client.describe_alarms, **request)
            alarms.extend(response.get("MetricAlarms", []))
            next_token = response.get("NextToken")
            if not next_token:
                return alarms

    def iter_alarms(self, *, state_value: Optional[str] = None) -> Iterator[Dict[str, Any]]:
        next_token: Optional[str] = None
        while True:
            request: Dict[str, Any] = {"AlarmTypes": ["MetricAlarm"], "MaxRecords": 100}
            if state_value:
                request["StateValue"] = state_value
            if next_token:
                request["NextToken"] = next_token
            response = self.executor.call("DescribeAlarms", self.client.describe_alarms, **request)
            yield from response.get("MetricAlarms", [])
            next_token = response.get("NextToken")
            if not next_token:
                return

    def put_metric_alarm(self, request: Dict[str, Any]) -> None:
        self.executor.call("PutMetricAlarm", self.client.put_metric_alarm, **request)

    def put_anomaly_detector(self, request: Dict[str, Any]) -> None:
        self.executor.call("PutAnomalyDetector", self.client.put_anomaly_detector, **request)

    def delete_alarms(self, names: Sequence[str]) -> None:
        names = list(names)
        for start in range(0, len(names), DELETE_BATCH_SIZE):
            self.executor.call(
                "DeleteAlarms",
                self.client.delete_alarms,
                AlarmNames=names[start : start + DELETE_BATCH_SIZE],
            )

    def set_alarm_state(self, name: str, *, state: str = "OK", reason: str) -> None:
        self.executor.call(
            "SetAlarmState",
            self.client.set_alarm_state,
            AlarmName=name,
            StateValue=state,
            StateReason=reason,
        )

    def list_tags(self, resource_arn: str) -> Dict[str, str]:
        response = self.executor.call(
            "ListTagsForResource",
            self.client.list_tags_for_resource,
            ResourceARN=resource_arn,
        )
        return {tag["Key"]: tag["Value"] for tag in response.get("Tags", [])}

    def list_metrics(self, *, namespace: str, metric_name: str, dimensions: List[Dict[str, str]]) -> List[Dict[str, Any]]:
        metrics: List[Dict[str, Any]] = []
        next_token: Optional[str] = None
        while True:
            request: Dict[str, Any] = {
                "Namespace": namespace,
                "MetricName": metric_name,
                "Dimensions": dimensions,
            }
            if next_token:
                request["NextToken"] = next_token
            response = self.executor.call("ListMetrics", self.client.list_metrics, **request)
            metrics.extend(response.get("Metrics", []))
            next_token = response.get("NextToken")
            if not next_token:
                return metrics
