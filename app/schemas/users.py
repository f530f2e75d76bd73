from __future__ import annotations

from pydantic import BaseModel


class MeResponse(BaseModel):
    id: str
    email: str | None
    display_name: str
    avatar_url: str | None
