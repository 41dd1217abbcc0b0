from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import boto3
import yaml

from auto_alarm.engine.retry.executor import RetryExecutor
from auto_alarm.util.errors import AlarmBackendError
from auto_alarm.util.logging import get_logger, log_event

MAX_RULES_PER_NAMESPACE = 2000
MAX_RULES_PER_WORKSPACE = 2000
NOT_FOUND_CODE = "ResourceNotFoundException"


@dataclass(frozen=True)
class PrometheusRule:
    alert: str
    expr: str
    duration: str
    severity: str
    annotations: Dict[str, str] = field(default_factory=dict)

    def to_document(self) -> Dict[str, Any]:
        return {
            "alert": self.alert,
            "expr": self.expr,
            "for": self.duration,
            "labels": {"severity": self.severity},
            "annotations": dict(self.annotations),
        }


def _count_rules(document: Dict[str, Any]) -> int:
    return sum(len(group.get("rules") or []) for group in document.get("groups") or [])


def _decode(data: Any) -> Dict[str, Any]:
    if isinstance(data, (bytes, bytearray)):
        data = data.decode("utf-8")
    return yaml.safe_load(data or "") or {"groups": []}


class PrometheusRuleWriter:
    """Stores alert rules for one resource as a rule group in Amazon Managed Prometheus."""

    def __init__(
        self,
        workspace_id: str,
        *,
        executor: Optional[RetryExecutor] = None,
        client: Any = None,
    ) -> None:
        self.workspace_id = workspace_id
        self.client = client or boto3.client("amp")
        self.executor = executor or RetryExecutor()
        self.logger = get_logger(self.__class__.__name__)

    def _load(self, namespace: str) -> Optional[Dict[str, Any]]:
        try:
            response = self.executor.call(
                "DescribeRuleGroupsNamespace",
                self.client.describe_rule_groups_namespace,
                workspaceId=self.workspace_id,
                name=namespace,
            )
        except AlarmBackendError as exc:
            if exc.code == NOT_FOUND_CODE:
                return None
            raise
        return _decode(response["ruleGroupsNamespace"].get("data"))

    def _namespaces(self) -> List[str]:
        names: List[str] = []
        next_token: Optional[str] = None
        while True:
            request: Dict[str, Any] = {"workspaceId": self.workspace_id}
            if next_token:
                request["nextToken"] = next_token
            response = self.executor.call(
                "ListRuleGroupsNamespaces",
                self.client.list_rule_groups_namespaces,
                **request,
            )
            names.extend(item["name"] for item in response.get("ruleGroupsNamespaces", []))
            next_token = response.get("nextToken")
            if not next_token:
                return names

    def _workspace_rule_count(self, *, excluding: str) -> int:
        total = 0
        for name in self._namespaces():
            if name == excluding:
                continue
            document = self._load(name)
            if document:
                total += _count_rules(document)
        return total

    def _store(self, namespace: str, document: Dict[str, Any], *, exists: bool) -> None:
        data = yaml.safe_dump(document, sort_keys=False).encode("utf-8")
        if exists:
            self.executor.call(
                "PutRuleGroupsNamespace",
                self.client.put_rule_groups_namespace,
                workspaceId=self.workspace_id,
                name=namespace,
                data=data,
            )
        else:
            self.executor.call(
                "CreateRuleGroupsNamespace",
                self.client.create_rule_groups_namespace,
                workspaceId=self.workspace_id,
                name=namespace,
                data=data,
            )

    def sync(self, namespace: str, group_name: str, rules: List[PrometheusRule]) -> bool:
        """Replace the rule group for a resource.

        Returns False without writing anything when the change would exceed
        the per-namespace or per-workspace rule cap.
        """
        current = self._load(namespace)
        document = current or {"groups": []}
        groups = [group for group in document.get("groups") or [] if group.get("name") != group_name]
        if rules:
            groups.append({"name": group_name, "rules": [rule.to_document() for rule in rules]})
        updated = {"groups": groups}

        namespace_rules = _count_rules(updated)
        if namespace_rules > MAX_RULES_PER_NAMESPACE:
            log_event(self.logger, "prometheus_namespace_full", namespace=namespace, rules=namespace_rules)
            return False
        workspace_rules = namespace_rules + self._workspace_rule_count(excluding=namespace)
        if workspace_rules > MAX_RULES_PER_WORKSPACE:
            log_event(self.logger, "prometheus_workspace_full", workspace_id=self.workspace_id, rules=workspace_rules)
            return False

        if current is None and not rules:
            return True
        self._store(namespace, updated, exists=current is not None)
        log_event(self.logger, "prometheus_rules_synced", namespace=namespace, group=group_name, rules=len(rules))
        return True

    def remove(self, namespace: str, group_name: str) -> None:
        current = self._load(namespace)
        if current is None:
            return
        groups = [group for group in current.get("groups") or [] if group.get("name") != group_name]
        if len(groups) == len(current.get("groups") or []):
            return
        self._store(namespace, {"groups": groups}, exists=True)
        log_event(self.logger, "prometheus_rules_removed", namespace=namespace, group=group_name)
