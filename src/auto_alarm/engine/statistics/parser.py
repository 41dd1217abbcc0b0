"""Validation and normalization of CloudWatch statistic tokens.

Three token shapes are accepted:

* standard statistics (``SampleCount``, ``Average``, ``Sum``, ``Minimum``,
  ``Maximum``) and ``IQM``,
* single-value extended statistics such as ``p90`` or ``tm50``,
* bounded-range extended statistics such as ``TM(10%:90%)`` or ``PR(:300)``.

Parsing never raises: any token the grammar rejects yields the caller's default.
"""

from __future__ import annotations

import re
from typing import Any, Optional

STANDARD_STATISTICS = {
    "samplecount": "SampleCount",
    "average": "Average",
    "sum": "Sum",
    "minimum": "Minimum",
    "maximum": "Maximum",
}
IQM = "IQM"

_SINGLE_VALUE = re.compile(r"^(p|tm|tc|ts|wm)([1-9][0-9]?)$")
_RANGE_SHAPE = re.compile(r"^([A-Za-z]{2})\((.*)\)$")
_RANGE = re.compile(r"^(TM|WM|TC|TS|PR)\(([^:()]*):([^:()]*)\)$")
_PERCENT_BOUND = re.compile(r"^([0-9]{1,2})(\.[0-9])?%$")
_ABSOLUTE_BOUND = re.compile(r"^[0-9]+(\.[0-9]+)?$")

_EXTENDED_PREFIX = re.compile(r"^(p|tm|tc|ts|wm|IQM|PR|TM|WM|TC|TS)")


def _bound_kind(bound: str) -> Optional[str]:
    if bound == "":
        return "empty"
    if _PERCENT_BOUND.match(bound):
        return "percent"
    if _ABSOLUTE_BOUND.match(bound):
        return "absolute"
    return None


def _bound_value(bound: str) -> float:
    return float(bound.rstrip("%"))


def _normalize_range(token: str) -> Optional[str]:
    shape = _RANGE_SHAPE.match(token)
    if not shape:
        return None
    return f"{shape.group(1).upper()}({shape.group(2)})"


def _valid_range(token: str) -> bool:
    match = _RANGE.match(token)
    if not match:
        return False
    start, end = match.group(2), match.group(3)
    start_kind, end_kind = _bound_kind(start), _bound_kind(end)
    if start_kind is None or end_kind is None:
        return False
    if start_kind == "empty" and end_kind == "empty":
        return False
    if "empty" not in (start_kind, end_kind) and start_kind != end_kind:
        return False
    present = [bound for bound in (start, end) if bound]
    if len(present) == 2 and all(_bound_value(bound) == 0 for bound in present):
        return False
    return True


def parse_statistic(raw: Any, default: str) -> str:
    """Return the canonical form of ``raw``, or ``default`` if it is not a valid statistic."""
    if not isinstance(raw, str):
        return default
    token = raw.strip()
    if not token:
        return default

    lowered = token.lower()
    if lowered in STANDARD_STATISTICS:
        return STANDARD_STATISTICS[lowered]
    if lowered == IQM.lower():
        return IQM

    if _SINGLE_VALUE.match(lowered):
        return lowered

    normalized = _normalize_range(token)
    if normalized and _valid_range(normalized):
        return normalized
    return default


def is_extended_statistic(statistic: str) -> bool:
    """True when ``statistic`` belongs in CloudWatch's ``ExtendedStatistic`` field."""
    if statistic in STANDARD_STATISTICS.values():
        return False
    return bool(_EXTENDED_PREFIX.match(statistic))
