from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class AuthUser(BaseModel):
    """
    Represents an authenticated back-office caller decoded from a bearer JWT.
    """

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="sub")
    email: Optional[str] = None
    role: str = "authenticated"
    business_id: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role in ("admin", "service_role")
