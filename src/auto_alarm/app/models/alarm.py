from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

TAG_NAMESPACE = "autoalarm:"
ENABLED_TAG = f"{TAG_NAMESPACE}enabled"


class AlarmClassification(str, Enum):
    WARNING = "Warning"
    CRITICAL = "Critical"


class AlarmVariant(str, Enum):
    STATIC = "static"
    ANOMALY = "anomaly"


class ComparisonOperator(str, Enum):
    GREATER_THAN_OR_EQUAL = "GreaterThanOrEqualToThreshold"
    GREATER_THAN = "GreaterThanThreshold"
    LESS_THAN = "LessThanThreshold"
    LESS_THAN_OR_EQUAL = "LessThanOrEqualToThreshold"
    OUTSIDE_BAND = "LessThanLowerOrGreaterThanUpperThreshold"
    BELOW_BAND = "LessThanLowerThreshold"
    ABOVE_BAND = "GreaterThanUpperThreshold"

    @property
    def is_band(self) -> bool:
        return self in BAND_OPERATORS


THRESHOLD_OPERATORS = frozenset(
    {
        ComparisonOperator.GREATER_THAN_OR_EQUAL,
        ComparisonOperator.GREATER_THAN,
        ComparisonOperator.LESS_THAN,
        ComparisonOperator.LESS_THAN_OR_EQUAL,
    }
)
BAND_OPERATORS = frozenset(
    {
        ComparisonOperator.OUTSIDE_BAND,
        ComparisonOperator.BELOW_BAND,
        ComparisonOperator.ABOVE_BAND,
    }
)


class MissingDataTreatment(str, Enum):
    MISSING = "missing"
    IGNORE = "ignore"
    BREACHING = "breaching"
    NOT_BREACHING = "notBreaching"


class Dimension(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    value: str

    def to_api(self) -> Dict[str, str]:
        return {"Name": self.name, "Value": self.value}


class MetricAlarmOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    warning_threshold: Optional[float] = None
    critical_threshold: Optional[float] = None
    period: int = 60
    evaluation_periods: int = Field(default=5, ge=1)
    data_points_to_alarm: int = Field(default=5, ge=1)
    statistic: str = "Average"
    comparison_operator: ComparisonOperator = ComparisonOperator.GREATER_THAN_OR_EQUAL
    missing_data_treatment: MissingDataTreatment = MissingDataTreatment.IGNORE

    @model_validator(mode="after")
    def data_points_within_window(self) -> "MetricAlarmOptions":
        if self.data_points_to_alarm > self.evaluation_periods:
            raise ValueError("data_points_to_alarm must be <= evaluation_periods")
        return self

    def threshold_for(self, classification: AlarmClassification) -> Optional[float]:
        if classification is AlarmClassification.WARNING:
            return self.warning_threshold
        return self.critical_threshold


class MetricAlarmConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    tag_key: str
    metric_name: str
    metric_namespace: str
    default_create: bool = False
    anomaly: bool = False
    defaults: MetricAlarmOptions
    prometheus_expression: Optional[str] = None

    @field_validator("tag_key", "metric_name", "metric_namespace")
    @classmethod
    def required_stripped(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("value is required")
        return value.strip()

    @model_validator(mode="after")
    def operator_matches_variant(self) -> "MetricAlarmConfig":
        operator = self.defaults.comparison_operator
        if self.anomaly and not operator.is_band:
            raise ValueError(f"anomaly config {self.tag_key} must use a band comparison operator")
        if not self.anomaly and operator.is_band:
            raise ValueError(f"static config {self.tag_key} must use a threshold comparison operator")
        return self

    @property
    def variant(self) -> AlarmVariant:
        return AlarmVariant.ANOMALY if self.anomaly else AlarmVariant.STATIC

    @property
    def tag_name(self) -> str:
        return f"{TAG_NAMESPACE}{self.tag_key}"


class MetricTarget(BaseModel):
    """One dimension set a metric is alarmed on, optionally tagged with a name discriminator."""

    model_config = ConfigDict(frozen=True)

    dimensions: List[Dimension]
    discriminator: Optional[str] = None
