from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from starlette.requests import HTTPConnection

from app.core.config import settings
from app.core.security import decode_access_token
from app.services.realtime import PushChannelManager

# Access tokens are issued by the account service; this API only verifies them
oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{settings.API_V1_STR}/auth/token")


async def get_current_user_id(token: Annotated[str, Depends(oauth2_scheme)]) -> int:
    try:
        token_data = decode_access_token(token)
    except JWTError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Could not validate credentials") from exc

    if not token_data.sub:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid token payload")
    try:
        return int(token_data.sub)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid token payload") from exc


CurrentUserId = Annotated[int, Depends(get_current_user_id)]


def get_channel_manager(connection: HTTPConnection) -> PushChannelManager:
    channels = getattr(connection.app.state, "channels", None)
    if channels is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Alarm channels are not running")
    return channels


ChannelsDep = Annotated[PushChannelManager, Depends(get_channel_manager)]
