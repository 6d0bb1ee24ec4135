"""
Publishing-rights enforcement dependency for event routes.

require_publishing_rights() authenticates the user and charges one publish
to their plans, raising 403 when no plan has capacity left.
"""
import logging
from fastapi import Depends, HTTPException, status
from sqlalchemy.orm import Session

from eventhub.db.session import get_db
from eventhub.db.models.user import User
from eventhub.core.auth_dependency import get_current_user_obj
from eventhub.core.errors import LimitExceededError
from eventhub.services import subscription_service

logger = logging.getLogger(__name__)


def require_publishing_rights():
    """
    Dependency that charges one event publish before the route runs.
    
    Returns:
        User object if a publish was charged
        
    Raises:
        HTTPException 403: No publishing capacity, with the restriction reason
        HTTPException 401: Unauthorized
        HTTPException 404: User not found
    """
    def publish_checker(
        user: User = Depends(get_current_user_obj),
        db: Session = Depends(get_db)
    ) -> User:
        try:
            entry = subscription_service.consume_publish_credit(db, user.id)
        except LimitExceededError as e:
            rights = subscription_service.get_publishing_rights(db, user.id)
            reason = e.details.get("reason") or (
                rights.restriction_reason.value if rights.restriction_reason else None
            )
            logger.info(
                f"Publish refused: user_id={user.id}, reason={reason}, "
                f"remaining_credits={rights.remaining_credits}"
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "error": "publishing_limit_reached",
                    "reason": reason,
                    "weekly_remaining": rights.weekly.remaining if rights.weekly else None,
                    "monthly_remaining": rights.monthly.remaining if rights.monthly else None,
                    "remaining_credits": rights.remaining_credits,
                }
            )
        
        logger.debug(f"Publish charged: user_id={user.id}, entry_id={entry.id}, type={entry.type}")
        return user
    
    return publish_checker
