import yaml
from botocore.exceptions import ClientError

import auto_alarm.adapters.alarms.prometheus as prometheus_module
from auto_alarm.adapters.alarms.prometheus import PrometheusRule, PrometheusRuleWriter
from auto_alarm.engine.retry.executor import RetryExecutor


class FakeAmpClient:
    """Keeps rule group namespaces in memory the way the amp API reports them."""

    def __init__(self) -> None:
        self.namespaces = {}
        self.writes = []

    def describe_rule_groups_namespace(self, *, workspaceId, name):
        if name not in self.namespaces:
            raise ClientError(
                {"Error": {"Code": "ResourceNotFoundException", "Message": "not found"}},
                "DescribeRuleGroupsNamespace",
            )
        return {"ruleGroupsNamespace": {"name": name, "data": self.namespaces[name]}}

    def list_rule_groups_namespaces(self, *, workspaceId, **kwargs):
        return {"ruleGroupsNamespaces": [{"name": name} for name in sorted(self.namespaces)]}

    def create_rule_groups_namespace(self, *, workspaceId, name, data):
        self.writes.append(("create", name))
        self.namespaces[name] = data

    def put_rule_groups_namespace(self, *, workspaceId, name, data):
        self.writes.append(("put", name))
        self.namespaces[name] = data


def _rule(alert: str) -> PrometheusRule:
    return PrometheusRule(alert=alert, expr="up == 0", duration="300s", severity="critical")


def _writer(client: FakeAmpClient) -> PrometheusRuleWriter:
    return PrometheusRuleWriter("ws-1", executor=RetryExecutor(sleep=lambda _: None), client=client)


def test_sync_creates_then_replaces_group() -> None:
    client = FakeAmpClient()
    writer = _writer(client)

    assert writer.sync("AutoAlarm-EC2", "AutoAlarm-EC2-i-1", [_rule("a"), _rule("b")])
    assert writer.sync("AutoAlarm-EC2", "AutoAlarm-EC2-i-2", [_rule("c")])
    assert writer.sync("AutoAlarm-EC2", "AutoAlarm-EC2-i-1", [_rule("d")])

    document = yaml.safe_load(client.namespaces["AutoAlarm-EC2"])
    groups = {group["name"]: [rule["alert"] for rule in group["rules"]] for group in document["groups"]}
    assert groups == {"AutoAlarm-EC2-i-2": ["c"], "AutoAlarm-EC2-i-1": ["d"]}
    assert client.writes == [("create", "AutoAlarm-EC2"), ("put", "AutoAlarm-EC2"), ("put", "AutoAlarm-EC2")]
    rule = document["groups"][0]["rules"][0]
    assert rule["for"] == "300s"
    assert rule["labels"] == {"severity": "critical"}


def test_sync_refuses_to_exceed_namespace_cap(monkeypatch) -> None:
    monkeypatch.setattr(prometheus_module, "MAX_RULES_PER_NAMESPACE", 2)
    client = FakeAmpClient()
    writer = _writer(client)

    assert writer.sync("AutoAlarm-EC2", "AutoAlarm-EC2-i-1", [_rule("a"), _rule("b")])
    assert not writer.sync("AutoAlarm-EC2", "AutoAlarm-EC2-i-2", [_rule("c")])

    assert len(client.writes) == 1


def test_sync_counts_rules_across_the_workspace(monkeypatch) -> None:
    monkeypatch.setattr(prometheus_module, "MAX_RULES_PER_WORKSPACE", 2)
    client = FakeAmpClient()
    writer = _writer(client)

    assert writer.sync("AutoAlarm-ALB", "AutoAlarm-ALB-web", [_rule("a"), _rule("b")])
    assert not writer.sync("AutoAlarm-EC2", "AutoAlarm-EC2-i-1", [_rule("c")])
    assert "AutoAlarm-EC2" not in client.namespaces


def test_remove_drops_only_the_resource_group() -> None:
    client = FakeAmpClient()
    writer = _writer(client)
    writer.sync("AutoAlarm-EC2", "AutoAlarm-EC2-i-1", [_rule("a")])
    writer.sync("AutoAlarm-EC2", "AutoAlarm-EC2-i-2", [_rule("b")])

    writer.remove("AutoAlarm-EC2", "AutoAlarm-EC2-i-1")
    writer.remove("AutoAlarm-EC2", "AutoAlarm-EC2-i-9")
    writer.remove("AutoAlarm-RDS", "AutoAlarm-RDS-db")

    document = yaml.safe_load(client.namespaces["AutoAlarm-EC2"])
    assert [group["name"] for group in document["groups"]] == ["AutoAlarm-EC2-i-2"]
    assert len(client.writes) == 3
