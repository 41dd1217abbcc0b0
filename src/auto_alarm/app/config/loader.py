from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import yaml
from pydantic import BaseModel, Field

from auto_alarm.app.models.alarm import MetricAlarmConfig

SUPPORTED_SCHEMA_VERSIONS = {1}


class MetricOverride(BaseModel):
    default_create: Optional[bool] = None
    defaults: Dict[str, Any] = Field(default_factory=dict)


class CatalogOverrides(BaseModel):
    schema_version: int
    services: Dict[str, Dict[str, MetricOverride]] = Field(default_factory=dict)


def load_catalog_overrides(path: str | Path) -> CatalogOverrides:
    data: Dict[str, Any]
    with open(path, "r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    overrides = CatalogOverrides.model_validate(data)
    if overrides.schema_version not in SUPPORTED_SCHEMA_VERSIONS:
        raise ValueError(f"Unsupported schema_version {overrides.schema_version}")
    return overrides


def apply_overrides(
    catalogs: Mapping[str, Sequence[MetricAlarmConfig]],
    overrides: CatalogOverrides,
) -> Dict[str, Tuple[MetricAlarmConfig, ...]]:
    """Return a copy of ``catalogs`` with per-metric defaults replaced.

    Overrides are re-validated through the models, so an override that breaks
    an invariant (for example a band operator on a static metric) raises.
    """
    unknown_services = set(overrides.services) - set(catalogs)
    if unknown_services:
        raise ValueError(f"Unknown services in catalog overrides: {sorted(unknown_services)}")
    result: Dict[str, Tuple[MetricAlarmConfig, ...]] = {}
    for service, catalog in catalogs.items():
        service_overrides = overrides.services.get(service, {})
        known = {config.tag_key for config in catalog}
        unknown_metrics = set(service_overrides) - known
        if unknown_metrics:
            raise ValueError(f"Unknown metrics for {service}: {sorted(unknown_metrics)}")
        configs: List[MetricAlarmConfig] = []
        for config in catalog:
            override = service_overrides.get(config.tag_key)
            if override is None:
                configs.append(config)
                continue
            data = config.model_dump()
            data["defaults"].update(override.defaults)
            if override.default_create is not None:
                data["default_create"] = override.default_create
            configs.append(MetricAlarmConfig.model_validate(data))
        result[service] = tuple(configs)
    return result
