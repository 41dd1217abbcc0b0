from __future__ import annotations

from typing import Dict, List, Mapping, Optional, Sequence, Type

from auto_alarm.adapters.alarms.prometheus import PrometheusRuleWriter
from auto_alarm.adapters.tags.fetchers import ResourceTagFetcher
from auto_alarm.app.models.alarm import MetricAlarmConfig
from auto_alarm.engine.dispatch.registry import Dispatcher
from auto_alarm.engine.reconcile.engine import ReconciliationEngine
from auto_alarm.engine.services.base import ServiceDefinition, ServiceHandler
from auto_alarm.engine.services.catalogs import SERVICE_CATALOGS
from auto_alarm.engine.services.ec2 import Ec2Handler
from auto_alarm.engine.services.handlers import (
    AlbHandler,
    CloudFrontHandler,
    OpenSearchHandler,
    RdsHandler,
    SqsHandler,
    StepFunctionsHandler,
    TargetGroupHandler,
)
from auto_alarm.persistence.dynamo_alarm_index import DynamoAlarmIndex
from auto_alarm.util.metrics import CloudWatchMetrics

_ARN = r"arn:aws[a-z-]*"

# service -> (alarm label, resource id pattern, handler class)
SERVICES: Dict[str, tuple] = {
    "ec2": ("EC2", rf"^(i-[0-9a-f]+|{_ARN}:ec2:[^:]*:[0-9]*:instance/i-[0-9a-f]+)$", Ec2Handler),
    "alb": ("ALB", rf"^{_ARN}:elasticloadbalancing:[^:]*:[0-9]*:loadbalancer/app/[^/]+/[^/]+$", AlbHandler),
    "targetgroup": (
        "TG",
        rf"^{_ARN}:elasticloadbalancing:[^:]*:[0-9]*:targetgroup/[^/]+/[^/]+$",
        TargetGroupHandler,
    ),
    "sqs": ("SQS", rf"^({_ARN}:sqs:[^:]*:[0-9]*:[^:/]+|https://\S+/[0-9]+/[^/]+)$", SqsHandler),
    "opensearch": ("OS", rf"^{_ARN}:es:[^:]*:[0-9]*:domain/[^/]+$", OpenSearchHandler),
    "rds": ("RDS", rf"^{_ARN}:rds:[^:]*:[0-9]*:db:[^:]+$", RdsHandler),
    "sfn": ("SFN", rf"^{_ARN}:states:[^:]*:[0-9]*:stateMachine:[^:]+$", StepFunctionsHandler),
    "cloudfront": (
        "CF",
        rf"^(E[0-9A-Z]+|{_ARN}:cloudfront::[0-9]*:distribution/E[0-9A-Z]+)$",
        CloudFrontHandler,
    ),
}


def service_definitions(
    catalogs: Optional[Mapping[str, Sequence[MetricAlarmConfig]]] = None,
) -> List[ServiceDefinition]:
    catalogs = catalogs if catalogs is not None else SERVICE_CATALOGS
    return [
        ServiceDefinition(service=service, label=label, pattern=pattern, catalog=tuple(catalogs[service]))
        for service, (label, pattern, _) in SERVICES.items()
    ]


def build_handlers(
    engine: ReconciliationEngine,
    tags: ResourceTagFetcher,
    *,
    catalogs: Optional[Mapping[str, Sequence[MetricAlarmConfig]]] = None,
    index: Optional[DynamoAlarmIndex] = None,
    metrics: Optional[CloudWatchMetrics] = None,
    prometheus: Optional[PrometheusRuleWriter] = None,
) -> Dict[str, ServiceHandler]:
    handlers: Dict[str, ServiceHandler] = {}
    for definition in service_definitions(catalogs):
        handler_class: Type[ServiceHandler] = SERVICES[definition.service][2]
        kwargs = {"index": index, "metrics": metrics}
        if handler_class is Ec2Handler:
            kwargs["prometheus"] = prometheus
        handlers[definition.service] = handler_class(definition, engine, tags, **kwargs)
    return handlers


def register_services(dispatcher: Dispatcher, handlers: Mapping[str, ServiceHandler]) -> Dispatcher:
    for service, handler in handlers.items():
        dispatcher.register(service, handler.definition.pattern, handler.handle)
    return dispatcher
