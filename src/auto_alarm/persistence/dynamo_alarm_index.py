from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

import boto3

CATEGORY_KEY = "CATEGORY#cloudwatch"


@dataclass
class AlarmIndexRecord:
    resource: str
    alarms: List[str] = field(default_factory=list)
    tags: Dict[str, str] = field(default_factory=dict)
    updated_at: Optional[str] = None


class DynamoAlarmIndex:
    """Resource to alarm-name index, one item per reconciled resource."""

    def __init__(self, table_name: str) -> None:
        self.table = boto3.resource("dynamodb").Table(table_name)

    @staticmethod
    def _key(resource: str) -> Dict[str, str]:
        return {"PK": CATEGORY_KEY, "SK": f"RESOURCE#{resource}"}

    def put(self, resource: str, alarms: Iterable[str], tags: Dict[str, str]) -> None:
        item = {
            **self._key(resource),
            "resource": resource,
            "alarms": sorted(alarms),
            "tags": dict(tags),
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        self.table.put_item(Item=item)

    def get(self, resource: str) -> Optional[AlarmIndexRecord]:
        response = self.table.get_item(Key=self._key(resource))
        item = response.get("Item")
        if not item:
            return None
        return AlarmIndexRecord(
            resource=item["resource"],
            alarms=list(item.get("alarms") or []),
            tags=dict(item.get("tags") or {}),
            updated_at=item.get("updated_at"),
        )

    def delete(self, resource: str) -> None:
        self.table.delete_item(Key=self._key(resource))
