from __future__ import annotations

import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Pattern, Tuple

from auto_alarm.engine.canonical.models import CanonicalEvent
from auto_alarm.util.logging import get_logger, log_event
from auto_alarm.util.metrics import CloudWatchMetrics

Handler = Callable[[CanonicalEvent], None]


@dataclass(frozen=True)
class BatchItemFailure:
    item_identifier: str
    error: str = ""

    def to_response(self) -> Dict[str, str]:
        return {"itemIdentifier": self.item_identifier}


@dataclass(frozen=True)
class Registration:
    service: str
    pattern: Pattern[str]
    handler: Handler


class Dispatcher:
    """Routes canonical events to the handler registered for their service."""

    def __init__(self, *, max_workers: int = 1, metrics: Optional[CloudWatchMetrics] = None) -> None:
        self.max_workers = max(1, max_workers)
        self.metrics = metrics
        self.logger = get_logger(self.__class__.__name__)
        self._registrations: Dict[str, Registration] = {}

    def register(self, service: str, pattern: str, handler: Handler) -> None:
        if service in self._registrations:
            raise ValueError(f"handler already registered for service {service}")
        self._registrations[service] = Registration(service=service, pattern=re.compile(pattern), handler=handler)

    @property
    def services(self) -> List[str]:
        return sorted(self._registrations)

    def dispatch_one(self, message_id: str, event: CanonicalEvent) -> Optional[BatchItemFailure]:
        registration = self._registrations.get(event.service)
        if registration is None:
            log_event(self.logger, "dispatch_unknown_service", message_id=message_id, service=event.service)
            return None
        if not registration.pattern.search(event.resource_id):
            log_event(
                self.logger,
                "dispatch_pattern_mismatch",
                message_id=message_id,
                service=event.service,
                resource_id=event.resource_id,
            )
            return None
        try:
            registration.handler(event)
        except Exception as exc:
            if self.metrics:
                self.metrics.record_worker_error(error_type=exc.__class__.__name__)
            log_event(
                self.logger,
                "dispatch_failed",
                message_id=message_id,
                service=event.service,
                resource_id=event.resource_id,
                error=str(exc),
                error_type=exc.__class__.__name__,
            )
            return BatchItemFailure(item_identifier=message_id, error=str(exc))
        return None

    def dispatch(self, items: Iterable[Tuple[str, CanonicalEvent]]) -> List[BatchItemFailure]:
        """Run every item and return the failed ones; never raises.

        Events for the same resource run one after another in arrival order;
        different resources may run concurrently.
        """
        groups: Dict[Tuple[str, str], List[Tuple[str, CanonicalEvent]]] = {}
        for message_id, event in items:
            groups.setdefault((event.service, event.resource_id), []).append((message_id, event))

        def run_group(group: List[Tuple[str, CanonicalEvent]]) -> List[Optional[BatchItemFailure]]:
            return [self.dispatch_one(message_id, event) for message_id, event in group]

        if self.max_workers == 1 or len(groups) <= 1:
            results = [run_group(group) for group in groups.values()]
        else:
            with ThreadPoolExecutor(max_workers=min(self.max_workers, len(groups))) as executor:
                results = list(executor.map(run_group, groups.values()))
        return [failure for group in results for failure in group if failure is not None]


def batch_response(failures: Iterable[BatchItemFailure]) -> Dict[str, List[Dict[str, str]]]:
    return {"batchItemFailures": [failure.to_response() for failure in failures]}
