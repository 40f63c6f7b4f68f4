from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

from txgate.utils.sanitize import redact_secrets

logger = logging.getLogger("txgate.events")


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"txgate.{name}")


def log_event(event: str, level: int = logging.INFO, **fields: Any) -> None:
    entry = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event": event,
        **redact_secrets(fields),
    }
    logger.log(level, json.dumps(entry, default=str))
