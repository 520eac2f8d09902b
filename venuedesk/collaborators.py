"""
Narrow contracts for the notification and points services.

Both are fire-and-forget from the engine's point of view: calls go
through best_effort(), which logs failures and never lets them change
the outcome of the workflow.
"""

from typing import Any, Callable, Dict, Optional

from .logger import get_logger

logger = get_logger()

# Notification events
PROPOSAL_SUBMITTED = "proposal_submitted"
PROPOSAL_APPROVED = "proposal_approved"
PROPOSAL_REJECTED = "proposal_rejected"
CONTENT_PENDING = "content_pending_review"
CONTENT_APPROVED = "content_approved"
CONTENT_REJECTED = "content_rejected"

MODERATORS = None  # recipient meaning "every admin and moderator"


class Notifier:
    """Delivers a notification. The default implementation only logs."""

    def send(self, event: str, recipient: Optional[str], payload: Dict[str, Any]) -> None:
        logger.info(
            "Notification",
            notification=event,
            recipient=recipient or "moderators",
            **payload,
        )


class PointsLedger:
    """Credits users for contributions. The default implementation only logs."""

    def award(self, user_id: str, points: int, reason: str, item_type: str, item_id: str) -> None:
        logger.info(
            "Points awarded",
            user_id=user_id,
            points=points,
            reason=reason,
            item_type=item_type,
            item_id=item_id,
        )


def best_effort(action: str, func: Callable, *args, **kwargs) -> bool:
    """
    Call a collaborator, logging instead of raising on failure.

    Returns True if the call completed.
    """
    try:
        func(*args, **kwargs)
        return True
    except Exception as e:
        logger.error(f"{action} failed", error=str(e), error_type=type(e).__name__)
        return False
