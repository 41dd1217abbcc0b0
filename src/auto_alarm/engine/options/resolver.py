from __future__ import annotations

import math
from enum import Enum
from typing import Callable, List, Optional, Type, TypeVar

from auto_alarm.app.models.alarm import (
    ComparisonOperator,
    MetricAlarmOptions,
    MissingDataTreatment,
)
from auto_alarm.engine.statistics.parser import parse_statistic
from auto_alarm.util.logging import get_logger, log_event

FIELD_SEPARATOR = "/"
NO_THRESHOLD = "-"

EnumT = TypeVar("EnumT", bound=Enum)

logger = get_logger(__name__)


def _parse_threshold(value: str, default: Optional[float]) -> Optional[float]:
    if value == NO_THRESHOLD:
        return None
    try:
        parsed = float(value)
    except ValueError:
        return default
    if math.isnan(parsed) or math.isinf(parsed):
        return default
    return parsed


def _parse_count(value: str, default: int) -> int:
    try:
        parsed = int(value)
    except ValueError:
        return default
    if parsed < 1:
        return default
    return parsed


def _parse_enum(value: str, enum_type: Type[EnumT], default: EnumT) -> EnumT:
    lowered = value.lower()
    for member in enum_type:
        if member.value.lower() == lowered:
            return member
    return default


def _parse_operator(value: str, default: ComparisonOperator) -> ComparisonOperator:
    operator = _parse_enum(value, ComparisonOperator, default)
    if operator.is_band != default.is_band:
        return default
    return operator


def _field(fields: List[str], index: int) -> Optional[str]:
    if index >= len(fields):
        return None
    value = fields[index].strip()
    return value or None


def _override(fields: List[str], index: int, default, parse: Callable):
    value = _field(fields, index)
    if value is None:
        return default
    return parse(value, default)


def resolve(tag_value: Optional[str], defaults: MetricAlarmOptions) -> MetricAlarmOptions:
    """Merge a slash-delimited override string onto ``defaults``.

    Every field of the result is populated: a missing, blank or unparseable
    override keeps the default, and ``-`` in either threshold position
    disables that classification.
    """
    if not tag_value or not tag_value.strip():
        return defaults
    fields = tag_value.strip().split(FIELD_SEPARATOR)

    evaluation_periods = _override(fields, 3, defaults.evaluation_periods, _parse_count)
    data_points_to_alarm = _override(fields, 5, defaults.data_points_to_alarm, _parse_count)
    if data_points_to_alarm > evaluation_periods:
        log_event(
            logger,
            "data_points_clamped",
            tag_value=tag_value,
            data_points_to_alarm=data_points_to_alarm,
            evaluation_periods=evaluation_periods,
        )
        data_points_to_alarm = evaluation_periods

    return MetricAlarmOptions(
        warning_threshold=_override(fields, 0, defaults.warning_threshold, _parse_threshold),
        critical_threshold=_override(fields, 1, defaults.critical_threshold, _parse_threshold),
        period=_override(fields, 2, defaults.period, _parse_count),
        evaluation_periods=evaluation_periods,
        statistic=_override(fields, 4, defaults.statistic, parse_statistic),
        data_points_to_alarm=data_points_to_alarm,
        comparison_operator=_override(fields, 6, defaults.comparison_operator, _parse_operator),
        missing_data_treatment=_override(
            fields,
            7,
            defaults.missing_data_treatment,
            lambda value, default: _parse_enum(value, MissingDataTreatment, default),
        ),
    )


def format_threshold(value: float) -> str:
    """Shortest exact text for a threshold: no exponent for integers, full precision otherwise."""
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def _format_number(value: Optional[float]) -> str:
    if value is None:
        return NO_THRESHOLD
    return format_threshold(value)


def metric_alarm_options_to_string(options: MetricAlarmOptions) -> str:
    return FIELD_SEPARATOR.join(
        [
            _format_number(options.warning_threshold),
            _format_number(options.critical_threshold),
            str(options.period),
            str(options.evaluation_periods),
            options.statistic,
            str(options.data_points_to_alarm),
            options.comparison_operator.value,
            options.missing_data_treatment.value,
        ]
    )


def normalize_period(seconds: int) -> int:
    """Snap a period to a value CloudWatch accepts: 10, 30 or a multiple of 60."""
    if seconds < 10:
        return 10
    if seconds <= 45:
        return 30
    if seconds % 60:
        return math.ceil(seconds / 60) * 60
    return seconds
