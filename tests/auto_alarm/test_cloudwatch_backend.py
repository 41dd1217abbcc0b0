import pytest
from botocore.exceptions import ClientError
from moto import mock_aws

from auto_alarm.adapters.alarms.cloudwatch import CloudWatchAlarmBackend
from auto_alarm.engine.retry.executor import RetryExecutor
from auto_alarm.util.errors import RetryExhaustedError


def _alarm(name: str, **extra) -> dict:
    return {
        "AlarmName": name,
        "MetricName": "CPUUtilization",
        "Namespace": "AWS/EC2",
        "Statistic": "Maximum",
        "Period": 60,
        "EvaluationPeriods": 1,
        "Threshold": 90.0,
        "ComparisonOperator": "GreaterThanThreshold",
        "Dimensions": [{"Name": "InstanceId", "Value": "i-0abc"}],
        **extra,
    }


@pytest.fixture
def backend():
    with mock_aws():
        yield CloudWatchAlarmBackend(executor=RetryExecutor(sleep=lambda _: None))


def test_prefix_discovery_only_returns_matching_alarms(backend) -> None:
    backend.put_metric_alarm(_alarm("AutoAlarm-EC2-i-0abc-CPUUtilization-Warning"))
    backend.put_metric_alarm(_alarm("AutoAlarm-EC2-i-0abc-CPUUtilization-Critical"))
    backend.put_metric_alarm(_alarm("AutoAlarm-EC2-i-0abcdef-CPUUtilization-Warning"))

    names = sorted(alarm["AlarmName"] for alarm in backend.describe_alarms_with_prefix("AutoAlarm-EC2-i-0abc-"))

    assert names == [
        "AutoAlarm-EC2-i-0abc-CPUUtilization-Critical",
        "AutoAlarm-EC2-i-0abc-CPUUtilization-Warning",
    ]


def test_delete_alarms_removes_them(backend) -> None:
    backend.put_metric_alarm(_alarm("AutoAlarm-EC2-i-0abc-CPUUtilization-Warning"))

    backend.delete_alarms(["AutoAlarm-EC2-i-0abc-CPUUtilization-Warning"])

    assert backend.describe_alarms_with_prefix("AutoAlarm-EC2-i-0abc-") == []


def test_alarm_state_and_tags(backend) -> None:
    name = "AutoAlarm-SQS-orders-ApproximateNumberOfMessagesVisible-Critical"
    backend.put_metric_alarm(_alarm(name, Tags=[{"Key": "autoalarm:re-alarm-enabled", "Value": "false"}]))

    backend.set_alarm_state(name, state="ALARM", reason="test")
    alarming = list(backend.iter_alarms(state_value="ALARM"))

    assert [alarm["AlarmName"] for alarm in alarming] == [name]
    assert backend.list_tags(alarming[0]["AlarmArn"]) == {"autoalarm:re-alarm-enabled": "false"}


class ThrottledClient:
    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.requests = []

    def put_metric_alarm(self, **request):
        self.requests.append(request)
        if len(self.requests) <= self.failures:
            raise ClientError({"Error": {"Code": "Throttling", "Message": "Rate exceeded"}}, "PutMetricAlarm")
        return {}


def test_backend_retries_throttled_writes() -> None:
    client = ThrottledClient(failures=2)
    backend = CloudWatchAlarmBackend(executor=RetryExecutor(sleep=lambda _: None), client=client)

    backend.put_metric_alarm(_alarm("a"))

    assert len(client.requests) == 3


def test_backend_gives_up_after_max_attempts() -> None:
    client = ThrottledClient(failures=100)
    backend = CloudWatchAlarmBackend(executor=RetryExecutor(max_attempts=2, sleep=lambda _: None), client=client)

    with pytest.raises(RetryExhaustedError):
        backend.put_metric_alarm(_alarm("a"))
