#!/usr/bin/env python
from __future__ import annotations

import argparse
import json
from pathlib import Path

from auto_alarm.app.config.loader import apply_overrides, load_catalog_overrides
from auto_alarm.app.models.alarm import Dimension
from auto_alarm.engine.reconcile.engine import (
    build_anomaly_detector_request,
    build_anomaly_request,
    build_static_request,
    compute_desired,
)
from auto_alarm.engine.services.catalogs import SERVICE_CATALOGS
from auto_alarm.engine.services.registry import SERVICES


def parse_pairs(values: list[str], what: str) -> dict[str, str]:
    mapping: dict[str, str] = {}
    for value in values:
        if "=" not in value:
            raise ValueError(f"{what} must be key=value")
        key, item = value.split("=", 1)
        mapping[key] = item
    return mapping


def main() -> None:
    parser = argparse.ArgumentParser(description="Print the alarms AutoAlarm would create, without calling AWS")
    parser.add_argument("--service", required=True, choices=sorted(SERVICES))
    parser.add_argument("--resource", required=True, help="Identifier used in alarm names")
    parser.add_argument("--tag", action="append", default=[], help="Resource tag (key=value)")
    parser.add_argument("--dimension", action="append", default=[], help="Metric dimension (Name=Value)")
    parser.add_argument("--config", help="Path to catalog overrides YAML")
    parser.add_argument("--timezone", default="UTC", help="Anomaly detector timezone")
    parser.add_argument("--output", help="Write JSON here instead of stdout")
    args = parser.parse_args()

    catalogs = SERVICE_CATALOGS
    if args.config:
        catalogs = apply_overrides(catalogs, load_catalog_overrides(Path(args.config)))
    label = SERVICES[args.service][0]
    tags = parse_pairs(args.tag, "tag")
    dimensions = [Dimension(name=name, value=value) for name, value in parse_pairs(args.dimension, "dimension").items()]

    state = compute_desired(label, args.resource, tags, dimensions, catalogs[args.service])
    rendered = {"enabled": state.enabled, "alarms": [], "removed": state.disabled}
    for alarm in state.alarms:
        if alarm.config.anomaly:
            entry = {
                "anomaly_detector": build_anomaly_detector_request(alarm, timezone=args.timezone),
                "alarm": build_anomaly_request(label, args.resource, alarm),
            }
        else:
            entry = {"alarm": build_static_request(label, args.resource, alarm)}
        rendered["alarms"].append(entry)

    text = json.dumps(rendered, indent=2)
    if args.output:
        path = Path(args.output)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text + "\n", encoding="utf-8")
    else:
        print(text)


if __name__ == "__main__":
    main()
