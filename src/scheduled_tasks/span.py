from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from django.core.serializers.json import DjangoJSONEncoder

logger = logging.getLogger(__name__)


class _SpanEncoder(DjangoJSONEncoder):
    def default(self, o):
        try:
            return super().default(o)
        except TypeError:
            return str(o)


def _jsonable(value: Any) -> Any:
    return json.loads(json.dumps(value, cls=_SpanEncoder))


@dataclass
class TaskSpan:
    """
    Logging context handed to a task handler.

    ``log`` entries are kept on the span and persisted with the run. Pass
    ``stdout=True`` to also emit the message at INFO on the process log.
    The deadline is advisory: handlers that can stop early should check
    ``remaining()`` between units of work.
    """
    task_name: str
    timeout: float
    run_id: str | None = None
    attributes: dict[str, Any] = field(default_factory=dict)
    entries: list[dict[str, Any]] = field(default_factory=list)
    _deadline: float = field(init=False, repr=False)

    def __post_init__(self):
        self._deadline = time.monotonic() + self.timeout

    def remaining(self) -> float:
        return max(0.0, self._deadline - time.monotonic())

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0

    def log(self, message: str, *, stdout: bool = False, **fields: Any) -> None:
        entry: dict[str, Any] = {
            "at": datetime.now(timezone.utc).isoformat(),
            "message": str(message),
        }
        if fields:
            entry["fields"] = _jsonable(fields)
        self.entries.append(entry)
        logger.log(
            logging.INFO if stdout else logging.DEBUG,
            "scheduled_task_log task=%s run_id=%s message=%s",
            self.task_name,
            self.run_id,
            message,
        )

    def set_attributes(self, **attributes: Any) -> None:
        self.attributes.update(_jsonable(attributes))

    def audit_trail(self) -> tuple[dict[str, Any], ...]:
        trail = list(self.entries)
        if self.attributes:
            trail.append({"attributes": dict(self.attributes)})
        return tuple(trail)
