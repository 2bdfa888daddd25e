"""Requester notifications — console mock (NOTIFICATIONS_ENABLED=False).

SMS / push delivery lives outside this service. When notifications are
disabled the message is written to the log instead.
"""
import logging

from app.core.config import settings

logger = logging.getLogger(__name__)


def _format_amount(amount) -> str:
    if amount is None:
        return "N/A"
    return f"{settings.CURRENCY} {float(amount):,.0f}"


def notify_decision(request, kind: str, stage: str, approved: bool, actor: str) -> None:
    """Tell the requester that a stage decided on their request."""
    outcome = "approved" if approved else "rejected"
    if not settings.NOTIFICATIONS_ENABLED:
        logger.info(
            "\n"
            "=== REQUEST %s ===\n"
            "To: %s\n"
            "Request: %s %s (%s)\n"
            "Stage: %s by %s\n"
            "Status: %s\n"
            "====================",
            outcome.upper(),
            request.requested_by,
            kind,
            request.id,
            _format_amount(getattr(request, "amount", None)),
            stage,
            actor,
            request.status,
        )
        return

    logger.warning(
        "NOTIFICATIONS_ENABLED=True but no delivery channel is configured. "
        "Falling back to console log for request %s.",
        request.id,
    )
    logger.info(
        "DECISION NOTICE (unsent): to=%s request=%s stage=%s outcome=%s",
        request.requested_by, request.id, stage, outcome,
    )
