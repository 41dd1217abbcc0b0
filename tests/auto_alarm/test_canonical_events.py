import json

from auto_alarm.engine.canonical.events import canonicalize, event_name

INSTANCE_ARN = "arn:aws:ec2:us-east-1:123456789012:instance/i-0abc"


def _tag_event(tags, resource_type="instance", service="ec2", resources=None):
    return {
        "source": "aws.tag",
        "detail-type": "Tag Change on Resource",
        "resources": resources if resources is not None else [INSTANCE_ARN],
        "detail": {
            "changed-tag-keys": list(tags or {}),
            "service": service,
            "resource-type": resource_type,
            "tags": tags,
        },
    }


def test_tag_event_keeps_only_autoalarm_tags() -> None:
    event = canonicalize(_tag_event({"autoalarm:enabled": "true", "autoalarm:cpu": "90/95", "Name": "web"}))

    assert event is not None
    assert event.service == "ec2"
    assert event.resource_id == INSTANCE_ARN
    assert event.is_arn
    assert event.tags == {"autoalarm:enabled": "true", "autoalarm:cpu": "90/95"}
    assert not event.created and not event.destroyed


def test_tag_event_without_autoalarm_tags_has_empty_tags() -> None:
    event = canonicalize(_tag_event({"Name": "web"}))

    assert event is not None
    assert event.tags == {}


def test_tag_event_with_missing_tags_is_dropped() -> None:
    assert canonicalize(_tag_event(None)) is None
    assert canonicalize(_tag_event({})) is None


def test_unknown_source_is_dropped() -> None:
    assert canonicalize({"source": "aws.lambda", "detail": {"eventName": "CreateFunction"}}) is None


def test_unknown_event_name_is_dropped() -> None:
    assert canonicalize(_tag_event({"autoalarm:enabled": "true"}, service="lambda", resource_type="function")) is None


def test_state_change_event_uses_detail_state() -> None:
    message = {
        "source": "aws.ec2",
        "detail-type": "EC2 Instance State-change Notification",
        "detail": {"instance-id": "i-0abc", "state": "terminated"},
    }

    event = canonicalize(message)

    assert event_name(message) == "terminated"
    assert event is not None
    assert event.resource_id == "i-0abc"
    assert not event.is_arn
    assert event.destroyed
    assert event.tags is None


def test_stopped_instance_is_not_reconciled() -> None:
    message = {
        "source": "aws.ec2",
        "detail-type": "EC2 Instance State-change Notification",
        "detail": {"instance-id": "i-0abc", "state": "stopped"},
    }

    assert canonicalize(message) is None


def test_cloudtrail_event_reads_structured_identifier() -> None:
    arn = "arn:aws:elasticloadbalancing:us-east-1:123456789012:loadbalancer/app/web/50dc6c495c0c9188"
    message = {
        "source": "aws.elasticloadbalancing",
        "detail-type": "AWS API Call via CloudTrail",
        "detail": {
            "eventName": "CreateLoadBalancer",
            "responseElements": {"loadBalancers": [{"loadBalancerArn": arn}]},
        },
    }

    event = canonicalize(json.dumps(message))

    assert event is not None
    assert event.service == "alb"
    assert event.resource_id == arn
    assert event.created


def test_identifier_falls_back_to_marker_scan() -> None:
    arn = "arn:aws:states:us-east-1:123456789012:stateMachine:orders"
    message = {
        "source": "aws.states",
        "detail-type": "AWS API Call via CloudTrail",
        "detail": {
            "eventName": "CreateStateMachine",
            "responseElements": {"result": {"stateMachineArn": arn, "creationDate": "today"}},
        },
    }

    event = canonicalize(message)

    assert event is not None
    assert event.service == "sfn"
    assert event.resource_id == arn


def test_missing_identifier_is_dropped() -> None:
    message = {
        "source": "aws.sqs",
        "detail-type": "AWS API Call via CloudTrail",
        "detail": {"eventName": "DeleteQueue", "requestParameters": {}},
    }

    assert canonicalize(message) is None


def test_invalid_json_is_dropped() -> None:
    assert canonicalize("{not json") is None
    assert canonicalize("[1, 2]") is None
