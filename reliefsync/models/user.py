# file: reliefsync/models/user.py

from typing import Literal, Optional

from pydantic import EmailStr

from reliefsync.models.common import WireModel, id_field

Role = Literal["victim", "ngo", "volunteer", "government", "admin"]


class CurrentUser(WireModel):
    id: str = id_field()
    name: str = ""
    email: Optional[EmailStr] = None
    role: Role

    @property
    def user_room(self) -> str:
        return self.id

    @property
    def role_room(self) -> Optional[str]:
        if self.role in ("victim", "ngo"):
            return f"{self.role}_{self.id}"
        return None


class LoginData(WireModel):
    email: EmailStr
    password: str


class Token(WireModel):
    token: str
