"""
Bearer-token authentication for creator endpoints.

Tokens are issued by the account service; this API only verifies them and
resolves the creator they name.
"""
import logging
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session
from eventhub.core.security import decode_access_token
from eventhub.db.session import get_db
from eventhub.db.models.user import User

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


def get_current_user(token: str = Depends(oauth2_scheme)) -> str:
    """Email of the authenticated creator."""
    email = decode_access_token(token)
    if not email:
        logger.info("Rejected bearer token: invalid, expired or missing subject")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return email


def get_current_user_obj(
    email: str = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> User:
    """Creator record for the token subject; 404 if the account no longer exists."""
    user = db.query(User).filter(User.email == email).first()
    if user is None:
        logger.warning(f"Token subject has no creator account: email={email}")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user
