from __future__ import annotations

from loguru import logger


def log_db_error(context: str, exc: Exception) -> None:
    logger.error("Database error in {}: {}", context, exc)


def log_transition(requisition_id: str, current: str, target: str, actor: str) -> None:
    logger.info("Requisition {} {} -> {} ({})", requisition_id, current, target, actor)
