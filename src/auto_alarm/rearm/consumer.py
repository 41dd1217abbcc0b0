from __future__ import annotations

import json
from typing import Any, Dict, Iterable, List

from auto_alarm.adapters.alarms.cloudwatch import CloudWatchAlarmBackend
from auto_alarm.engine.dispatch.registry import BatchItemFailure
from auto_alarm.rearm.producer import reset_alarm
from auto_alarm.util.errors import NonRetryableError, RetryableError
from auto_alarm.util.logging import get_logger, log_event


class ReArmConsumer:
    """Resets the alarms named in re-arm queue messages."""

    def __init__(self, backend: CloudWatchAlarmBackend) -> None:
        self.backend = backend
        self.logger = get_logger(self.__class__.__name__)

    def handle_batch(self, records: Iterable[Dict[str, Any]]) -> List[BatchItemFailure]:
        failures: List[BatchItemFailure] = []
        for record in records:
            message_id = record.get("messageId", "")
            try:
                alarm_name = json.loads(record.get("body") or "{}")["alarm_name"]
            except (ValueError, KeyError, TypeError) as exc:
                # Malformed bodies cannot succeed on redelivery.
                log_event(self.logger, "rearm_message_invalid", message_id=message_id, error=str(exc))
                continue
            try:
                reset_alarm(self.backend, alarm_name)
            except (RetryableError, NonRetryableError) as exc:
                log_event(self.logger, "rearm_reset_failed", alarm=alarm_name, error=str(exc))
                failures.append(BatchItemFailure(item_identifier=message_id, error=str(exc)))
                continue
            log_event(self.logger, "alarm_rearmed", alarm=alarm_name)
        return failures
