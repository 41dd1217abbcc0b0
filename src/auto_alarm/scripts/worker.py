from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from auto_alarm.adapters.alarms.cloudwatch import CloudWatchAlarmBackend
from auto_alarm.adapters.alarms.prometheus import PrometheusRuleWriter
from auto_alarm.adapters.queue.sqs import SqsAdapter
from auto_alarm.adapters.tags.fetchers import ResourceTagFetcher
from auto_alarm.app.config.loader import apply_overrides, load_catalog_overrides
from auto_alarm.app.config.settings import Settings
from auto_alarm.engine.canonical.events import canonicalize
from auto_alarm.engine.dispatch.registry import BatchItemFailure, Dispatcher, batch_response
from auto_alarm.engine.reconcile.engine import ReconciliationEngine
from auto_alarm.engine.retry.executor import RetryExecutor
from auto_alarm.engine.services.catalogs import SERVICE_CATALOGS
from auto_alarm.engine.services.registry import build_handlers, register_services
from auto_alarm.persistence.dynamo_alarm_index import DynamoAlarmIndex
from auto_alarm.util.logging import get_logger, log_event
from auto_alarm.util.metrics import CloudWatchMetrics


def build_executor(settings: Settings, metrics: Optional[CloudWatchMetrics] = None) -> RetryExecutor:
    return RetryExecutor(
        max_attempts=settings.retry_max_attempts,
        base_delay=settings.retry_base_delay_seconds,
        max_delay=settings.retry_max_delay_seconds,
        metrics=metrics,
    )


def build_dispatcher(
    settings: Optional[Settings] = None,
    *,
    metrics: Optional[CloudWatchMetrics] = None,
) -> Dispatcher:
    settings = settings or Settings.from_env()
    metrics = metrics or CloudWatchMetrics.from_env()
    executor = build_executor(settings, metrics)
    engine = ReconciliationEngine(
        CloudWatchAlarmBackend(executor=executor),
        anomaly_timezone=settings.anomaly_timezone,
    )
    catalogs = SERVICE_CATALOGS
    if settings.catalog_overrides_path:
        catalogs = apply_overrides(catalogs, load_catalog_overrides(settings.catalog_overrides_path))
    handlers = build_handlers(
        engine,
        ResourceTagFetcher(executor=executor),
        catalogs=catalogs,
        index=DynamoAlarmIndex(settings.alarm_index_table) if settings.alarm_index_table else None,
        metrics=metrics,
        prometheus=(
            PrometheusRuleWriter(settings.prometheus_workspace_id, executor=executor)
            if settings.prometheus_workspace_id
            else None
        ),
    )
    dispatcher = Dispatcher(max_workers=settings.worker_concurrency, metrics=metrics)
    return register_services(dispatcher, handlers)


class Worker:
    def __init__(
        self,
        dispatcher: Dispatcher,
        *,
        queue: Optional[SqsAdapter] = None,
        metrics: Optional[CloudWatchMetrics] = None,
    ) -> None:
        self.dispatcher = dispatcher
        self.queue = queue
        self.metrics = metrics or CloudWatchMetrics.from_env()
        self.logger = get_logger(self.__class__.__name__)

    def handle_batch(self, records: Iterable[Dict[str, Any]]) -> List[BatchItemFailure]:
        items = []
        dropped = 0
        for record in records:
            event = canonicalize(record.get("body") or "")
            if event is None:
                dropped += 1
                continue
            items.append((record["messageId"], event))
        failures = self.dispatcher.dispatch(items)
        log_event(
            self.logger,
            "batch_processed",
            dispatched=len(items),
            dropped=dropped,
            failed=[failure.item_identifier for failure in failures],
        )
        return failures

    def poll_once(self) -> int:
        if not self.queue:
            raise RuntimeError("Queue URL not configured")
        try:
            messages = self.queue.receive()
        except (BotoCoreError, ClientError) as exc:
            self.metrics.record_worker_error(error_type="queue_receive_error")
            log_event(self.logger, "queue_receive_error", error=str(exc))
            return 0
        if not messages:
            return 0
        failures = self.handle_batch([message.to_record() for message in messages])
        failed_ids = {failure.item_identifier for failure in failures}
        for message in messages:
            # Failed messages stay on the queue and return after the visibility timeout.
            if message.message_id in failed_ids:
                continue
            try:
                self.queue.delete(message.receipt_handle)
            except (BotoCoreError, ClientError) as exc:
                self.metrics.record_worker_error(error_type="queue_delete_error")
                log_event(self.logger, "queue_delete_error", error=str(exc))
        return len(messages)

    def run_forever(self, *, max_polls: Optional[int] = None) -> None:
        if not self.queue:
            raise RuntimeError("Queue URL not configured")
        polls = 0
        while max_polls is None or polls < max_polls:
            self.poll_once()
            polls += 1


_worker: Optional[Worker] = None


def handler(event: Dict[str, Any], context: Any = None) -> Dict[str, List[Dict[str, str]]]:
    """Lambda entry point for the SQS event source."""
    global _worker
    if _worker is None:
        _worker = Worker(build_dispatcher())
    failures = _worker.handle_batch(event.get("Records", []))
    return batch_response(failures)


def main() -> None:
    settings = Settings.from_env()
    if not settings.queue_url:
        raise RuntimeError("SQS_QUEUE_URL is required")
    metrics = CloudWatchMetrics.from_env()
    worker = Worker(
        build_dispatcher(settings, metrics=metrics),
        queue=SqsAdapter(settings.queue_url),
        metrics=metrics,
    )
    worker.run_forever()


if __name__ == "__main__":
    main()
