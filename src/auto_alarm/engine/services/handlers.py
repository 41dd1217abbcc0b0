from __future__ import annotations

from typing import Dict, List

from auto_alarm.app.models.alarm import Dimension
from auto_alarm.engine.canonical.models import CanonicalEvent
from auto_alarm.engine.services.base import ServiceHandler, arn_account, arn_resource


class AlbHandler(ServiceHandler):
    """Application load balancers, keyed by load balancer name."""

    def _load_balancer(self, event: CanonicalEvent) -> str:
        return arn_resource(event.resource_id).split("loadbalancer/", 1)[-1]

    def identify(self, event: CanonicalEvent) -> str:
        return self._load_balancer(event).split("/")[1]

    def dimensions(self, event: CanonicalEvent, identifier: str) -> List[Dimension]:
        return [Dimension(name="LoadBalancer", value=self._load_balancer(event))]

    def fetch_tags(self, event: CanonicalEvent, identifier: str) -> Dict[str, str]:
        return self.tags.load_balancing_resource(event.resource_id)


class TargetGroupHandler(ServiceHandler):
    def identify(self, event: CanonicalEvent) -> str:
        return arn_resource(event.resource_id).split("/")[1]

    def dimensions(self, event: CanonicalEvent, identifier: str) -> List[Dimension]:
        dimensions = [Dimension(name="TargetGroup", value=arn_resource(event.resource_id))]
        load_balancer_arn = self.tags.target_group_load_balancer(event.resource_id)
        if load_balancer_arn:
            load_balancer = arn_resource(load_balancer_arn).split("loadbalancer/", 1)[-1]
            dimensions.append(Dimension(name="LoadBalancer", value=load_balancer))
        return dimensions

    def fetch_tags(self, event: CanonicalEvent, identifier: str) -> Dict[str, str]:
        return self.tags.load_balancing_resource(event.resource_id)


class SqsHandler(ServiceHandler):
    """SQS queues arrive as an ARN from tag events and as a queue URL from CloudTrail."""

    def identify(self, event: CanonicalEvent) -> str:
        if event.is_arn:
            return arn_resource(event.resource_id)
        return event.resource_id.rstrip("/").rsplit("/", 1)[-1]

    def dimensions(self, event: CanonicalEvent, identifier: str) -> List[Dimension]:
        return [Dimension(name="QueueName", value=identifier)]

    def fetch_tags(self, event: CanonicalEvent, identifier: str) -> Dict[str, str]:
        if event.is_arn:
            queue_url = self.tags.sqs_queue_url(identifier, arn_account(event.resource_id))
        else:
            queue_url = event.resource_id
        return self.tags.sqs_queue(queue_url)


class OpenSearchHandler(ServiceHandler):
    def identify(self, event: CanonicalEvent) -> str:
        return arn_resource(event.resource_id).split("/", 1)[-1]

    def dimensions(self, event: CanonicalEvent, identifier: str) -> List[Dimension]:
        return [
            Dimension(name="DomainName", value=identifier),
            Dimension(name="ClientId", value=arn_account(event.resource_id)),
        ]

    def fetch_tags(self, event: CanonicalEvent, identifier: str) -> Dict[str, str]:
        return self.tags.opensearch_domain(event.resource_id)


class RdsHandler(ServiceHandler):
    def identify(self, event: CanonicalEvent) -> str:
        return arn_resource(event.resource_id).split(":", 1)[-1]

    def dimensions(self, event: CanonicalEvent, identifier: str) -> List[Dimension]:
        return [Dimension(name="DBInstanceIdentifier", value=identifier)]

    def fetch_tags(self, event: CanonicalEvent, identifier: str) -> Dict[str, str]:
        return self.tags.rds_resource(event.resource_id)


class StepFunctionsHandler(ServiceHandler):
    def identify(self, event: CanonicalEvent) -> str:
        return arn_resource(event.resource_id).split(":", 1)[-1]

    def dimensions(self, event: CanonicalEvent, identifier: str) -> List[Dimension]:
        return [Dimension(name="StateMachineArn", value=event.resource_id)]

    def fetch_tags(self, event: CanonicalEvent, identifier: str) -> Dict[str, str]:
        return self.tags.state_machine(event.resource_id)


class CloudFrontHandler(ServiceHandler):
    """Distributions; their metrics are published in us-east-1 under Region=Global."""

    def identify(self, event: CanonicalEvent) -> str:
        if event.is_arn:
            return arn_resource(event.resource_id).split("/", 1)[-1]
        return event.resource_id

    def dimensions(self, event: CanonicalEvent, identifier: str) -> List[Dimension]:
        return [
            Dimension(name="DistributionId", value=identifier),
            Dimension(name="Region", value="Global"),
        ]

    def fetch_tags(self, event: CanonicalEvent, identifier: str) -> Dict[str, str]:
        return self.tags.cloudfront_distribution(identifier)
