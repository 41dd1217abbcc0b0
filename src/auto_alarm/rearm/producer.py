"""Find alarms stuck in ALARM and reset them so they notify again.

Alarms driven by autoscaling policies are never touched, and an alarm can
opt out with the ``autoalarm:re-alarm-enabled=false`` tag.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from botocore.exceptions import BotoCoreError, ClientError

from auto_alarm.adapters.alarms.cloudwatch import CloudWatchAlarmBackend
from auto_alarm.adapters.queue.sqs import MAX_BATCH_ENTRIES, SqsAdapter
from auto_alarm.app.models.alarm import TAG_NAMESPACE
from auto_alarm.engine.retry.executor import AdaptiveDelay, chunked
from auto_alarm.util.errors import NonRetryableError, RetryableError
from auto_alarm.util.logging import get_logger, log_event

REARM_TAG = f"{TAG_NAMESPACE}re-alarm-enabled"
AUTOSCALING_ACTION = ":autoscaling:"
REARM_REASON = "AutoAlarm re-arm: resetting alarm state so it can notify again"


@dataclass
class ReArmSummary:
    candidates: List[str] = field(default_factory=list)
    processed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    skipped: Dict[str, str] = field(default_factory=dict)


def has_autoscaling_action(alarm: Mapping[str, Any]) -> bool:
    actions = list(alarm.get("AlarmActions") or []) + list(alarm.get("OKActions") or [])
    return any(AUTOSCALING_ACTION in action for action in actions)


def reset_alarm(backend: CloudWatchAlarmBackend, alarm_name: str) -> None:
    backend.set_alarm_state(alarm_name, state="OK", reason=REARM_REASON)


class ReArmProducer:
    def __init__(
        self,
        backend: CloudWatchAlarmBackend,
        *,
        queue: Optional[SqsAdapter] = None,
        batch_size: int = MAX_BATCH_ENTRIES,
        delay: Optional[AdaptiveDelay] = None,
    ) -> None:
        self.backend = backend
        self.queue = queue
        self.batch_size = min(batch_size, MAX_BATCH_ENTRIES)
        self.delay = delay or AdaptiveDelay()
        self.logger = get_logger(self.__class__.__name__)

    def candidates(self, summary: ReArmSummary) -> List[str]:
        for alarm in self.backend.iter_alarms(state_value="ALARM"):
            name = alarm.get("AlarmName")
            if not name:
                continue
            if has_autoscaling_action(alarm):
                summary.skipped[name] = "autoscaling_action"
                continue
            try:
                tags = self.backend.list_tags(alarm["AlarmArn"]) if alarm.get("AlarmArn") else {}
            except (RetryableError, NonRetryableError) as exc:
                # The opt-out tag is unknown, so the alarm is left alone this pass.
                summary.failed.append(name)
                log_event(self.logger, "rearm_tags_failed", alarm=name, error=str(exc))
                continue
            if tags.get(REARM_TAG, "").strip().lower() == "false":
                summary.skipped[name] = "opted_out"
                continue
            summary.candidates.append(name)
        return summary.candidates

    def run(self) -> ReArmSummary:
        summary = ReArmSummary()
        names = self.candidates(summary)
        if self.queue:
            self._enqueue(names, summary)
        else:
            outcome = self.backend.executor.run_batches(
                "SetAlarmState",
                names,
                lambda name: reset_alarm(self.backend, name),
                batch_size=self.batch_size,
                delay=self.delay,
            )
            summary.processed.extend(outcome.succeeded)
            summary.failed.extend(name for name, _ in outcome.failed)
        log_event(
            self.logger,
            "rearm_complete",
            mode="queue" if self.queue else "inline",
            candidates=len(summary.candidates),
            processed=len(summary.processed),
            failed=summary.failed,
            skipped=len(summary.skipped),
        )
        return summary

    def _enqueue(self, names: List[str], summary: ReArmSummary) -> None:
        for batch in chunked(names, self.batch_size):
            try:
                rejected = self.queue.send_batch([{"alarm_name": name} for name in batch])
            except (BotoCoreError, ClientError) as exc:
                log_event(self.logger, "rearm_enqueue_failed", alarms=batch, error=str(exc))
                summary.failed.extend(batch)
                continue
            rejected_names = {batch[int(entry["Id"])] for entry in rejected}
            summary.failed.extend(name for name in batch if name in rejected_names)
            summary.processed.extend(name for name in batch if name not in rejected_names)
