from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from deepresearch.models.research import utcnow


class EventType(str, Enum):
    STATUS_CHANGE = "status_change"
    SOURCE_FOUND = "source_found"
    FACT_EXTRACTED = "fact_extracted"
    CONTRADICTION_DETECTED = "contradiction_detected"
    PROGRESS = "progress"


@dataclass
class ResearchEvent:
    session_id: str
    event: EventType
    data: dict[str, Any] = field(default_factory=dict)
    id: int | None = None
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.event.value,
            "data": self.data,
            "timestamp": self.created_at.isoformat(),
        }

    def format(self) -> str:
        return f"event: {self.event.value}\ndata: {json.dumps(self.to_dict())}\n\n"
