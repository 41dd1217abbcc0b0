from __future__ import annotations

from typing import Iterable, Optional

from auto_alarm.app.models.alarm import AlarmClassification, AlarmVariant

ALARM_PREFIX = "AutoAlarm"


def resource_prefix(service: str, resource_identifier: str) -> str:
    """Prefix shared by every alarm AutoAlarm owns for one resource."""
    return f"{ALARM_PREFIX}-{service}-{resource_identifier}-"


def build_alarm_name(
    service: str,
    resource_identifier: str,
    metric_name: str,
    classification: AlarmClassification,
    *,
    variant: AlarmVariant = AlarmVariant.STATIC,
    discriminator: Optional[str] = None,
) -> str:
    parts = [f"{ALARM_PREFIX}-{service}-{resource_identifier}-{metric_name}"]
    if discriminator:
        parts.append(discriminator)
    if variant is AlarmVariant.ANOMALY:
        parts.append("anomaly")
    parts.append(classification.value)
    return "-".join(parts)


def owned_by_resource(
    alarm_name: str,
    service: str,
    resource_identifier: str,
    metric_names: Iterable[str],
) -> bool:
    """True when ``alarm_name`` is an alarm of this resource rather than of a sibling.

    ``AutoAlarm-SQS-orders-`` is also a prefix of every alarm of queue
    ``orders-dlq``, so the text after the prefix must start with one of the
    resource's metric names.
    """
    prefix = resource_prefix(service, resource_identifier)
    if not alarm_name.startswith(prefix):
        return False
    remainder = alarm_name[len(prefix) :]
    return any(remainder.startswith(f"{metric_name}-") for metric_name in metric_names)
