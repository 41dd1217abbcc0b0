import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Set

import pytest
from freezegun import freeze_time

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))
SRC_ROOT = PROJECT_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from auto_alarm.engine.retry.executor import RetryExecutor  # noqa: E402
from auto_alarm.util.errors import AlarmBackendError  # noqa: E402

DEFAULT_ENV = {
    "AWS_ACCESS_KEY_ID": "test-access-key",
    "AWS_SECRET_ACCESS_KEY": "test-secret-key",
    "AWS_SESSION_TOKEN": "test-session",
    "AWS_DEFAULT_REGION": "us-east-1",
    "CLOUDWATCH_METRICS_ENABLED": "false",
}


class FakeAlarmBackend:
    """In-memory stand-in for CloudWatchAlarmBackend that counts mutations."""

    def __init__(self) -> None:
        self.alarms: Dict[str, Dict[str, Any]] = {}
        self.detectors: List[Dict[str, Any]] = []
        self.metrics: List[Dict[str, Any]] = []
        self.tags: Dict[str, Dict[str, str]] = {}
        self.states: Dict[str, str] = {}
        self.put_calls: List[str] = []
        self.delete_calls: List[List[str]] = []
        self.fail_puts: Set[str] = set()
        self.fail_deletes = False
        self.fail_resets: Set[str] = set()
        self.executor = RetryExecutor(sleep=lambda _: None)

    @property
    def mutation_count(self) -> int:
        return len(self.put_calls) + len(self.detectors) + len(self.delete_calls)

    def seed(self, name: str, **fields: Any) -> None:
        self.alarms[name] = {"AlarmName": name, **fields}

    def describe_alarms_with_prefix(self, prefix: str) -> List[Dict[str, Any]]:
        return [dict(alarm) for name, alarm in sorted(self.alarms.items()) if name.startswith(prefix)]

    def iter_alarms(self, *, state_value: Optional[str] = None):
        for alarm in self.alarms.values():
            if state_value is None or alarm.get("StateValue") == state_value:
                yield dict(alarm)

    def put_metric_alarm(self, request: Dict[str, Any]) -> None:
        name = request["AlarmName"]
        if name in self.fail_puts:
            raise AlarmBackendError("PutMetricAlarm", "ValidationError", f"bad alarm {name}")
        self.put_calls.append(name)
        stored = {key: value for key, value in request.items() if key not in {"Tags", "AlarmDescription"}}
        self.alarms[name] = stored

    def put_anomaly_detector(self, request: Dict[str, Any]) -> None:
        self.detectors.append(request)

    def delete_alarms(self, names: Sequence[str]) -> None:
        if self.fail_deletes:
            raise AlarmBackendError("DeleteAlarms", "AccessDenied", "not allowed")
        self.delete_calls.append(list(names))
        for name in names:
            self.alarms.pop(name, None)

    def set_alarm_state(self, name: str, *, state: str = "OK", reason: str) -> None:
        if name in self.fail_resets:
            raise AlarmBackendError("SetAlarmState", "ResourceNotFound", f"no alarm {name}")
        self.states[name] = state

    def list_tags(self, resource_arn: str) -> Dict[str, str]:
        return dict(self.tags.get(resource_arn, {}))

    def list_metrics(self, *, namespace: str, metric_name: str, dimensions: List[Dict[str, str]]) -> List[Dict[str, Any]]:
        return [
            metric
            for metric in self.metrics
            if metric["Namespace"] == namespace and metric["MetricName"] == metric_name
        ]


@pytest.fixture(autouse=True)
def _test_env(monkeypatch):
    for key, value in DEFAULT_ENV.items():
        monkeypatch.setenv(key, value)
    yield


@pytest.fixture
def fake_backend() -> FakeAlarmBackend:
    return FakeAlarmBackend()


@pytest.fixture
def freezer():
    with freeze_time("2024-01-01T00:00:00Z") as frozen_datetime:
        yield frozen_datetime
