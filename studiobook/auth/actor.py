from dataclasses import dataclass
from typing import Optional


CLIENT = "client"
STAFF = "staff"
INSTRUCTOR = "instructor"
SYSTEM = "system"

ROLES = (CLIENT, STAFF, INSTRUCTOR, SYSTEM)


@dataclass(frozen=True)
class Actor:
    """Who performs an operation; recorded on every booking event."""
    role: str
    id: Optional[int] = None

    @property
    def is_staff(self) -> bool:
        return self.role in (STAFF, INSTRUCTOR)

    @property
    def is_client(self) -> bool:
        return self.role == CLIENT

    @property
    def is_system(self) -> bool:
        return self.role == SYSTEM

    def can_act_for(self, client_id: int) -> bool:
        if self.is_client:
            return self.id == client_id
        return True

    @classmethod
    def system(cls) -> "Actor":
        return cls(role=SYSTEM)

    @classmethod
    def client(cls, client_id: int) -> "Actor":
        return cls(role=CLIENT, id=client_id)

    @classmethod
    def staff(cls, staff_id: int) -> "Actor":
        return cls(role=STAFF, id=staff_id)
