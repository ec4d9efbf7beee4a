"""
Logging utility functions and helpers.
"""

import logging
from typing import Any, Dict


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a module.

    Args:
        name: Module name (usually __name__)

    Returns:
        Configured logger

    Usage:
        from utils.logger import get_logger
        logger = get_logger(__name__)
    """
    return logging.getLogger(name)


# Redacted entirely
_SECRET_FIELDS = {'token', 'secret', 'api_key', 'authorization', 'otp'}

# Personal data: keep a short tail so support can still correlate records
_PERSONAL_FIELDS = {'phone', 'address', 'email'}


def sanitize_log_data(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Remove sensitive information from log data.

    Tokens keep their first 8 characters, phone numbers and addresses keep
    their last 4, nested dicts are sanitized recursively.

    Args:
        data: Dictionary that may contain sensitive fields

    Returns:
        Sanitized copy safe for logging
    """
    sanitized = data.copy()

    for key, value in sanitized.items():
        lowered = key.lower()

        if any(secret in lowered for secret in _SECRET_FIELDS):
            if isinstance(value, str):
                if 'token' in lowered and len(value) > 8:
                    sanitized[key] = f"{value[:8]}..."
                else:
                    sanitized[key] = "***REDACTED***"

        elif any(personal in lowered for personal in _PERSONAL_FIELDS):
            if isinstance(value, str):
                sanitized[key] = f"***{value[-4:]}" if len(value) > 4 else "***"

        elif isinstance(value, dict):
            sanitized[key] = sanitize_log_data(value)

    return sanitized


def log_broadcast(
    logger: logging.Logger,
    message_type: str,
    delivered: int,
    dropped: int,
    order_id: int | None = None,
    delivery_partner_id: int | None = None,
):
    """
    Log the outcome of one fan-out in a structured format.

    Dropped pushes are worth a warning, a clean fan-out is debug noise.

    Usage:
        log_broadcast(logger, "ORDER_UPDATE", delivered=3, dropped=0, order_id=12)
    """
    log_data = {
        "message_type": message_type,
        "delivered": delivered,
        "dropped": dropped,
    }

    if order_id is not None:
        log_data["order_id"] = order_id
    if delivery_partner_id is not None:
        log_data["delivery_partner_id"] = delivery_partner_id

    if dropped:
        logger.warning(f"{message_type} fan-out dropped {dropped} channel(s)", extra=log_data)
    else:
        logger.debug(f"{message_type} fan-out delivered to {delivered} channel(s)", extra=log_data)
