from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class TokenPayload(BaseModel):
    sub: Optional[str] = None
    exp: Optional[int] = None


class ChannelTokenResponse(BaseModel):
    """Short-lived token that authorizes opening one user's alarm channel."""
    model_config = ConfigDict(populate_by_name=True)

    token: str
    expires_in: int = Field(serialization_alias="expiresIn")
    expires_at: datetime = Field(serialization_alias="expiresAt")
