from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class Customer:
    email: str
    created_at: datetime
    name: str | None = None
    id: int | None = None
