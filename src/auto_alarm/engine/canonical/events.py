"""Reduce inbound EventBridge notifications to :class:`CanonicalEvent`.

Three shapes arrive on the queue: tag-change events from ``aws.tag``,
service state-change notifications and CloudTrail API-call records. Each is
looked up in :data:`SOURCE_EVENT_MAP` by source and event name; anything not
listed there is dropped.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Mapping, Optional, Sequence, Union

from pydantic import ValidationError

from auto_alarm.app.models.alarm import TAG_NAMESPACE
from auto_alarm.engine.canonical.models import CanonicalEvent, EventSpec, PathPart
from auto_alarm.util.logging import get_logger, log_event

CLOUDTRAIL_DETAIL_TYPE = "AWS API Call via CloudTrail"
TAG_CHANGE_DETAIL_TYPE = "Tag Change on Resource"
TAG_SOURCE = "aws.tag"

logger = get_logger(__name__)


class CanonicalizationError(ValueError):
    pass


def _tag_event(service: str) -> EventSpec:
    return EventSpec(service=service, carries_tags=True, id_path=("resources", 0), is_arn=True)


SOURCE_EVENT_MAP: Dict[str, Dict[str, EventSpec]] = {
    TAG_SOURCE: {
        "ec2/instance": _tag_event("ec2"),
        "elasticloadbalancing/loadbalancer": _tag_event("alb"),
        "elasticloadbalancing/targetgroup": _tag_event("targetgroup"),
        "sqs/queue": _tag_event("sqs"),
        "es/domain": _tag_event("opensearch"),
        "rds/db": _tag_event("rds"),
        "states/stateMachine": _tag_event("sfn"),
        "cloudfront/distribution": _tag_event("cloudfront"),
    },
    "aws.ec2": {
        "running": EventSpec(
            service="ec2",
            created=True,
            id_path=("detail", "instance-id"),
            id_markers=('"instance-id": "', '"'),
            is_arn=False,
        ),
        "terminated": EventSpec(
            service="ec2",
            destroyed=True,
            id_path=("detail", "instance-id"),
            id_markers=('"instance-id": "', '"'),
            is_arn=False,
        ),
    },
    "aws.elasticloadbalancing": {
        "CreateLoadBalancer": EventSpec(
            service="alb",
            created=True,
            id_path=("detail", "responseElements", "loadBalancers", 0, "loadBalancerArn"),
            id_markers=('"loadBalancerArn": "', '"'),
        ),
        "DeleteLoadBalancer": EventSpec(
            service="alb",
            destroyed=True,
            id_path=("detail", "requestParameters", "loadBalancerArn"),
            id_markers=('"loadBalancerArn": "', '"'),
        ),
        "CreateTargetGroup": EventSpec(
            service="targetgroup",
            created=True,
            id_path=("detail", "responseElements", "targetGroups", 0, "targetGroupArn"),
            id_markers=('"targetGroupArn": "', '"'),
        ),
        "DeleteTargetGroup": EventSpec(
            service="targetgroup",
            destroyed=True,
            id_path=("detail", "requestParameters", "targetGroupArn"),
            id_markers=('"targetGroupArn": "', '"'),
        ),
    },
    "aws.sqs": {
        "CreateQueue": EventSpec(
            service="sqs",
            created=True,
            id_path=("detail", "responseElements", "queueUrl"),
            id_markers=('"queueUrl": "', '"'),
            is_arn=False,
        ),
        "DeleteQueue": EventSpec(
            service="sqs",
            destroyed=True,
            id_path=("detail", "requestParameters", "queueUrl"),
            id_markers=('"queueUrl": "', '"'),
            is_arn=False,
        ),
    },
    "aws.es": {
        "CreateDomain": EventSpec(
            service="opensearch",
            created=True,
            id_path=("detail", "responseElements", "domainStatus", "aRN"),
            id_markers=('"aRN": "', '"'),
        ),
        "DeleteDomain": EventSpec(
            service="opensearch",
            destroyed=True,
            id_path=("detail", "responseElements", "domainStatus", "aRN"),
            id_markers=('"aRN": "', '"'),
        ),
    },
    "aws.rds": {
        "CreateDBInstance": EventSpec(
            service="rds",
            created=True,
            id_path=("detail", "responseElements", "dBInstanceArn"),
            id_markers=('"dBInstanceArn": "', '"'),
        ),
        "DeleteDBInstance": EventSpec(
            service="rds",
            destroyed=True,
            id_path=("detail", "responseElements", "dBInstanceArn"),
            id_markers=('"dBInstanceArn": "', '"'),
        ),
    },
    "aws.states": {
        "CreateStateMachine": EventSpec(
            service="sfn",
            created=True,
            id_path=("detail", "responseElements", "stateMachineArn"),
            id_markers=('"stateMachineArn": "', '"'),
        ),
        "DeleteStateMachine": EventSpec(
            service="sfn",
            destroyed=True,
            id_path=("detail", "requestParameters", "stateMachineArn"),
            id_markers=('"stateMachineArn": "', '"'),
        ),
    },
    "aws.cloudfront": {
        "CreateDistribution": EventSpec(
            service="cloudfront",
            created=True,
            id_path=("detail", "responseElements", "distribution", "id"),
            id_markers=('"id": "', '"'),
            is_arn=False,
        ),
        "DeleteDistribution": EventSpec(
            service="cloudfront",
            destroyed=True,
            id_path=("detail", "requestParameters", "id"),
            id_markers=('"id": "', '"'),
            is_arn=False,
        ),
    },
}


def event_name(message: Mapping[str, Any]) -> Optional[str]:
    detail = message.get("detail")
    if not isinstance(detail, Mapping):
        return None
    detail_type = message.get("detail-type")
    if detail_type == CLOUDTRAIL_DETAIL_TYPE:
        name = detail.get("eventName")
    elif detail_type == TAG_CHANGE_DETAIL_TYPE or message.get("source") == TAG_SOURCE:
        service = detail.get("service")
        resource_type = detail.get("resource-type")
        name = f"{service}/{resource_type}" if service and resource_type else None
    else:
        name = detail.get("state")
    return name if isinstance(name, str) and name else None


def _lookup(root: Any, path: Sequence[PathPart]) -> Optional[str]:
    current = root
    for part in path:
        if isinstance(part, int):
            if not isinstance(current, list) or part >= len(current):
                return None
        elif not isinstance(current, Mapping) or part not in current:
            return None
        current = current[part]
    if isinstance(current, str) and current.strip():
        return current.strip()
    return None


def _scan(detail: Any, markers: Sequence[str]) -> Optional[str]:
    start_marker, end_marker = markers
    encoded = json.dumps(detail)
    start = encoded.find(start_marker)
    if start < 0:
        return None
    start += len(start_marker)
    end = encoded.find(end_marker, start)
    if end <= start:
        return None
    return encoded[start:end]


def extract_identifier(message: Mapping[str, Any], spec: EventSpec) -> str:
    identifier = _lookup(message, spec.id_path)
    if identifier:
        return identifier
    if spec.id_markers:
        identifier = _scan(message.get("detail"), spec.id_markers)
        if identifier:
            log_event(logger, "identifier_recovered_by_scan", path=list(spec.id_path), identifier=identifier)
            return identifier
    raise CanonicalizationError(f"resource identifier not found at {list(spec.id_path)}")


def extract_tags(message: Mapping[str, Any]) -> Dict[str, str]:
    tags = (message.get("detail") or {}).get("tags")
    if not isinstance(tags, Mapping) or not tags:
        raise CanonicalizationError("tag event carries no tags")
    return {
        str(key): str(value)
        for key, value in tags.items()
        if str(key).startswith(TAG_NAMESPACE)
    }


def _decode(message: Union[str, bytes, Mapping[str, Any]]) -> Mapping[str, Any]:
    if isinstance(message, Mapping):
        return message
    try:
        decoded = json.loads(message)
    except (TypeError, ValueError) as exc:
        raise CanonicalizationError(f"message is not JSON: {exc}") from exc
    if not isinstance(decoded, Mapping):
        raise CanonicalizationError("message is not a JSON object")
    return decoded


def canonicalize(message: Union[str, bytes, Mapping[str, Any]]) -> Optional[CanonicalEvent]:
    """Return the canonical form of ``message`` or ``None`` when it cannot be used.

    A tag event whose tags are present but contain no ``autoalarm:`` keys
    yields an event with empty tags, which reconciles the resource as
    disabled.
    """
    try:
        decoded = _decode(message)
        source = decoded.get("source")
        events = SOURCE_EVENT_MAP.get(source) if isinstance(source, str) else None
        if events is None:
            log_event(logger, "event_source_unknown", source=source)
            return None
        name = event_name(decoded)
        spec = events.get(name) if name else None
        if spec is None:
            log_event(logger, "event_name_unknown", source=source, event_name=name)
            return None
        resource_id = extract_identifier(decoded, spec)
        tags = extract_tags(decoded) if spec.carries_tags else None
        return CanonicalEvent(
            service=spec.service,
            resource_id=resource_id,
            is_arn=spec.is_arn,
            tags=tags,
            created=spec.created,
            destroyed=spec.destroyed,
        )
    except (CanonicalizationError, ValidationError) as exc:
        log_event(logger, "event_unparseable", level=logging.WARNING, error=str(exc))
        return None
