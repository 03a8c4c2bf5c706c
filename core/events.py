from __future__ import annotations

import json
import logging
from typing import Any, Optional

from core.rules import RemovalDecision


EVENT_LOGGER_NAME = 'transmission_dh.events'


def make_event_logger(level: int = logging.INFO) -> logging.Logger:
    # Non-propagating so event lines are not duplicated by the root handler
    logger = logging.getLogger(EVENT_LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False
    for h in list(logger.handlers):
        logger.removeHandler(h)
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter('%(asctime)s [%(levelname)s]: %(message)s'))
    logger.addHandler(handler)
    return logger


class EventBus:
    def __init__(self, *, structured_logs: bool, dry_run: bool, logger: Any) -> None:
        self.structured_logs = structured_logs
        self.dry_run = dry_run
        self.logger = logger

    def log(self, event: str, **fields) -> None:
        payload = {"event": event, **fields}
        try:
            if self.structured_logs:
                self.logger.info(json.dumps(payload, ensure_ascii=False))
            else:
                self.logger.info(f"{event}: {fields}")
        except (TypeError, ValueError):
            self.logger.info(str(payload))

    def emit(
        self,
        event: str,
        *,
        decision: Optional[RemovalDecision] = None,
        **fields,
    ) -> None:
        if decision is not None:
            fields.setdefault('id', decision.torrent.id)
            fields.setdefault('name', decision.torrent.name)
            fields.setdefault('label', decision.torrent.label)
            fields.setdefault('reason', decision.reason)
            fields.setdefault('detail', decision.detail)
        if self.dry_run:
            fields.setdefault('dry_run', True)
        self.log(event, **fields)
