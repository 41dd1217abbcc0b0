from __future__ import annotations

import threading
from typing import Any, Dict, Iterable, List, Optional

import boto3

from auto_alarm.engine.retry.executor import RetryExecutor


def _pairs(tags: Optional[Iterable[Dict[str, str]]], key: str = "Key", value: str = "Value") -> Dict[str, str]:
    return {tag[key]: tag.get(value, "") for tag in tags or [] if tag.get(key)}


class ResourceTagFetcher:
    """Reads the current tags of a resource for events that do not carry them."""

    def __init__(self, *, executor: Optional[RetryExecutor] = None, clients: Optional[Dict[str, Any]] = None) -> None:
        self.executor = executor or RetryExecutor()
        self._clients: Dict[str, Any] = dict(clients or {})
        self._lock = threading.Lock()

    def client(self, name: str) -> Any:
        with self._lock:
            if name not in self._clients:
                self._clients[name] = boto3.client(name)
            return self._clients[name]

    def ec2_instance(self, instance_id: str) -> Dict[str, str]:
        tags: List[Dict[str, str]] = []
        next_token: Optional[str] = None
        while True:
            request: Dict[str, Any] = {"Filters": [{"Name": "resource-id", "Values": [instance_id]}]}
            if next_token:
                request["NextToken"] = next_token
            response = self.executor.call("DescribeTags", self.client("ec2").describe_tags, **request)
            tags.extend(response.get("Tags", []))
            next_token = response.get("NextToken")
            if not next_token:
                return _pairs(tags)

    def load_balancing_resource(self, arn: str) -> Dict[str, str]:
        response = self.executor.call("DescribeTags", self.client("elbv2").describe_tags, ResourceArns=[arn])
        tags: Dict[str, str] = {}
        for description in response.get("TagDescriptions", []):
            tags.update(_pairs(description.get("Tags")))
        return tags

    def target_group_load_balancer(self, arn: str) -> Optional[str]:
        response = self.executor.call(
            "DescribeTargetGroups",
            self.client("elbv2").describe_target_groups,
            TargetGroupArns=[arn],
        )
        for group in response.get("TargetGroups", []):
            for load_balancer_arn in group.get("LoadBalancerArns", []):
                return load_balancer_arn
        return None

    def sqs_queue_url(self, queue_name: str, account_id: Optional[str] = None) -> str:
        request: Dict[str, Any] = {"QueueName": queue_name}
        if account_id:
            request["QueueOwnerAWSAccountId"] = account_id
        response = self.executor.call("GetQueueUrl", self.client("sqs").get_queue_url, **request)
        return response["QueueUrl"]

    def sqs_queue(self, queue_url: str) -> Dict[str, str]:
        response = self.executor.call("ListQueueTags", self.client("sqs").list_queue_tags, QueueUrl=queue_url)
        return dict(response.get("Tags") or {})

    def opensearch_domain(self, arn: str) -> Dict[str, str]:
        response = self.executor.call("ListTags", self.client("opensearch").list_tags, ARN=arn)
        return _pairs(response.get("TagList"))

    def rds_resource(self, arn: str) -> Dict[str, str]:
        response = self.executor.call(
            "ListTagsForResource",
            self.client("rds").list_tags_for_resource,
            ResourceName=arn,
        )
        return _pairs(response.get("TagList"))

    def state_machine(self, arn: str) -> Dict[str, str]:
        response = self.executor.call(
            "ListTagsForResource",
            self.client("stepfunctions").list_tags_for_resource,
            resourceArn=arn,
        )
        return _pairs(response.get("tags"), key="key", value="value")

    def cloudfront_distribution(self, distribution_id: str) -> Dict[str, str]:
        distribution = self.executor.call(
            "GetDistribution",
            self.client("cloudfront").get_distribution,
            Id=distribution_id,
        )
        arn = distribution["Distribution"]["ARN"]
        response = self.executor.call(
            "ListTagsForResource",
            self.client("cloudfront").list_tags_for_resource,
            Resource=arn,
        )
        return _pairs((response.get("Tags") or {}).get("Items"))
