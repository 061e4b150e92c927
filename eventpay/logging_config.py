"""Logging helpers for eventpay.

Every module logs through a named child of the ``eventpay`` logger so that
deployments can route payment, ledger and audit output independently.
"""

import logging
import sys
from typing import Any, Optional

ROOT_LOGGER = "eventpay"

_DEFAULT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def setup_logging(level: str = "INFO", fmt: Optional[str] = None) -> logging.Logger:
    """Configure the eventpay logger hierarchy.

    Safe to call more than once; the stream handler is only attached the
    first time.
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level.upper())

    if not any(getattr(h, "_eventpay_handler", False) for h in logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(fmt or _DEFAULT_FORMAT))
        handler._eventpay_handler = True  # type: ignore[attr-defined]
        logger.addHandler(handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the eventpay namespace."""
    if name != ROOT_LOGGER and not name.startswith(ROOT_LOGGER + "."):
        name = f"{ROOT_LOGGER}.{name}"
    return logging.getLogger(name)


def log_payment_event(
    action: str,
    payment_id: str,
    success: bool = True,
    details: Optional[str] = None,
) -> None:
    """Log a payment lifecycle step (intent, confirmation, failure)."""
    logger = get_logger("eventpay.payments")
    msg = f"{action} payment={payment_id}"
    if details:
        msg += f" {details}"
    if success:
        logger.info(msg)
    else:
        logger.warning(msg)


def log_ledger_call(method: str, target: str, **extra: Any) -> None:
    """Debug-log an outbound ledger call."""
    logger = get_logger("eventpay.ledger")
    if not logger.isEnabledFor(logging.DEBUG):
        return
    suffix = " ".join(f"{k}={v}" for k, v in extra.items())
    logger.debug(f"{method} {target} {suffix}".rstrip())
