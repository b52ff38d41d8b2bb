from __future__ import annotations

from typing import Any

from loguru import logger


def log_store_error(operation: str, kind: str, exc: Exception, record_id: str | None = None) -> None:
    target = f"{kind} {record_id}" if record_id else kind
    logger.error("Store {} failed for {}: {}", operation, target, exc)


def log_delivery_failure(channel: str, event: Any, exc: Exception) -> None:
    logger.warning(
        "{} delivery of {} to {} {} failed: {}",
        channel,
        event.kind,
        event.recipient_kind,
        event.recipient_id,
        exc,
    )
