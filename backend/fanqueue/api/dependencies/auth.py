import logging
import uuid
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from fanqueue.core.security import ROLE_ORGANIZER, decode_token

logger = logging.getLogger(__name__)

# Tokens are issued by the external identity provider
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="api/v1/auth/token", auto_error=False)


def _credentials_exception() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_token_payload(token: Optional[str] = Depends(oauth2_scheme)) -> dict:
    if not token:
        raise _credentials_exception()

    payload = decode_token(token)
    if payload is None or not payload.get("sub"):
        logger.debug("Rejected bearer token")
        raise _credentials_exception()
    return payload


async def get_current_user_id(payload: dict = Depends(get_token_payload)) -> uuid.UUID:
    try:
        return uuid.UUID(payload["sub"])
    except ValueError:
        raise _credentials_exception()


async def get_current_organizer_id(
    payload: dict = Depends(get_token_payload),
    user_id: uuid.UUID = Depends(get_current_user_id),
) -> uuid.UUID:
    if payload.get("role") != ROLE_ORGANIZER:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Organizer access required",
        )
    return user_id
