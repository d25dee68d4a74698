"""Human-readable log of finished events and event/role units.

The markers only let a restarted run avoid re-scanning whole units. Row-level
dedup in :mod:`volunteer_cache` stays authoritative, so losing or ignoring
this file never produces duplicate rows.

Role lines carry the event and role as a JSON pair, so names containing any
separator text still round-trip to the same unit.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional, Set, TextIO, Tuple

logger = logging.getLogger(__name__)

EVENT_PREFIX = "Completed logging for event: "
ROLE_PREFIX = "Completed logging for event/role: "

RoleKey = Tuple[str, str]


def format_role_marker(event_name: str, role_name: str) -> str:
    return ROLE_PREFIX + json.dumps([event_name, role_name], ensure_ascii=False)


def parse_role_marker(text: str) -> Optional[RoleKey]:
    try:
        pair = json.loads(text)
    except ValueError:
        return None
    if not (isinstance(pair, list) and len(pair) == 2 and all(isinstance(p, str) for p in pair)):
        return None
    return pair[0], pair[1]


class StatusLog:
    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.completed_events: Set[str] = set()
        self.completed_roles: Set[RoleKey] = set()
        self._handle: Optional[TextIO] = None

    @classmethod
    def open(cls, path: Path) -> "StatusLog":
        log = cls(path)
        log.load()
        log._handle = log.path.open("a", encoding="utf-8")
        return log

    def __enter__(self) -> "StatusLog":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        if self._handle is not None:
            self._handle.close()
            self._handle = None

    def load(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.touch(exist_ok=True)
        for number, line in enumerate(self.path.read_text(encoding="utf-8").splitlines(), 1):
            if line.startswith(ROLE_PREFIX):
                key = parse_role_marker(line[len(ROLE_PREFIX):])
                if key is None:
                    # The unit is simply scanned again.
                    logger.warning("Ignoring unreadable role marker at %s:%d", self.path, number)
                    continue
                self.completed_roles.add(key)
            elif line.startswith(EVENT_PREFIX):
                self.completed_events.add(line[len(EVENT_PREFIX):])
        logger.info(
            "Status log %s lists %d finished events and %d finished roles",
            self.path,
            len(self.completed_events),
            len(self.completed_roles),
        )

    def is_event_complete(self, event_name: str) -> bool:
        return event_name in self.completed_events

    def is_role_complete(self, event_name: str, role_name: str) -> bool:
        return (event_name, role_name) in self.completed_roles

    def mark_event_complete(self, event_name: str) -> None:
        self._append(EVENT_PREFIX + event_name)
        self.completed_events.add(event_name)

    def mark_role_complete(self, event_name: str, role_name: str) -> None:
        self._append(format_role_marker(event_name, role_name))
        self.completed_roles.add((event_name, role_name))

    def _append(self, line: str) -> None:
        if self._handle is None:
            raise RuntimeError("StatusLog.open() must be used before writing markers")
        self._handle.write(line + "\n")
        self._handle.flush()
