"""Events emitted while a digest is delivered incrementally.

Order on a miss:
    feeds_fetching -> feeds_done -> synthesizing -> synthesized -> digest -> done
Order on a hit:
    cached -> digest -> done
On a fetch failure:
    feeds_fetching -> error -> done
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class DigestEventType(str, Enum):
    """Types of events emitted during digest delivery."""

    CACHED = "cached"
    FEEDS_FETCHING = "feeds_fetching"
    FEEDS_DONE = "feeds_done"
    SYNTHESIZING = "synthesizing"
    SYNTHESIZED = "synthesized"
    DIGEST = "digest"
    ERROR = "error"
    DONE = "done"


@dataclass
class DigestEvent:
    """Event emitted during digest delivery for SSE streaming."""

    type: DigestEventType
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_sse(self) -> str:
        """Format as Server-Sent Event.

        The digest event carries the payload itself so clients can use the
        data line as-is.
        """
        if self.type == DigestEventType.DIGEST:
            event_data = self.data
        else:
            event_data = {
                "type": self.type.value,
                "timestamp": self.timestamp.isoformat(),
                **self.data,
            }
        return f"event: {self.type.value}\ndata: {json.dumps(event_data, ensure_ascii=False)}\n\n"


def progress(event_type: DigestEventType, message: str, **data: Any) -> DigestEvent:
    return DigestEvent(type=event_type, data={"message": message, **data})
