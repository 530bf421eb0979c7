"""User Pydantic schemas."""

from typing import Optional

from pydantic import BaseModel

from campusnotes.models.user import RoleEnum


class UserOut(BaseModel):
    """Public user representation returned by the API."""
    id: int
    email: str
    full_name: str
    avatar_url: Optional[str] = None
    semester: str
    role: RoleEnum
    is_active: bool

    model_config = {"from_attributes": True}


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
