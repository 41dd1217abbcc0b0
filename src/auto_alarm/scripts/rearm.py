from __future__ import annotations

import argparse
from typing import Any, Dict, List, Optional

from auto_alarm.adapters.alarms.cloudwatch import CloudWatchAlarmBackend
from auto_alarm.adapters.queue.sqs import SqsAdapter
from auto_alarm.app.config.settings import Settings
from auto_alarm.engine.dispatch.registry import batch_response
from auto_alarm.rearm.consumer import ReArmConsumer
from auto_alarm.rearm.producer import ReArmProducer, ReArmSummary
from auto_alarm.scripts.worker import build_executor
from auto_alarm.util.metrics import CloudWatchMetrics


def build_backend(settings: Settings) -> CloudWatchAlarmBackend:
    return CloudWatchAlarmBackend(executor=build_executor(settings, CloudWatchMetrics.from_env()))


def run_producer(settings: Optional[Settings] = None, *, inline: bool = False) -> ReArmSummary:
    settings = settings or Settings.from_env()
    queue = SqsAdapter(settings.rearm_queue_url) if settings.rearm_queue_url and not inline else None
    producer = ReArmProducer(build_backend(settings), queue=queue, batch_size=settings.rearm_batch_size)
    return producer.run()


def producer_handler(event: Dict[str, Any], context: Any = None) -> Dict[str, Any]:
    """Scheduled Lambda entry point."""
    summary = run_producer()
    return {"candidates": len(summary.candidates), "processed": len(summary.processed), "failed": summary.failed}


def consumer_handler(event: Dict[str, Any], context: Any = None) -> Dict[str, List[Dict[str, str]]]:
    """Lambda entry point for the re-arm queue."""
    consumer = ReArmConsumer(build_backend(Settings.from_env()))
    return batch_response(consumer.handle_batch(event.get("Records", [])))


def main() -> None:
    parser = argparse.ArgumentParser(description="Reset AutoAlarm alarms stuck in ALARM state")
    parser.add_argument("--inline", action="store_true", help="Reset alarms directly instead of enqueuing them")
    args = parser.parse_args()
    summary = run_producer(inline=args.inline)
    print(f"candidates={len(summary.candidates)} processed={len(summary.processed)} failed={len(summary.failed)}")


if __name__ == "__main__":
    main()
