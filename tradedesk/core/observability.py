from __future__ import annotations

import logging
import time
import uuid

from tradedesk.config import settings

logger = logging.getLogger("tradedesk")

# Header values that must never reach a log line.
_REDACTED_HEADERS = {"authorization", "cookie", "x-auth-token"}


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=(level or settings.log_level),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def request_id_for(value: str | None) -> str:
    """Reuse a caller-supplied X-Request-ID when it is a valid UUID, else mint one."""

    if value:
        try:
            return str(uuid.UUID(str(value)))
        except ValueError:
            pass
    return str(uuid.uuid4())


def safe_headers(headers: dict[str, str]) -> dict[str, str]:
    return {
        k: ("<redacted>" if k.lower() in _REDACTED_HEADERS else v) for k, v in headers.items()
    }


def elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000.0, 2)
