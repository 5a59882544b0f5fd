"""Job trigger schemas."""
from datetime import date
from typing import Any

from pydantic import BaseModel


class JobRunRequest(BaseModel):
    today: date | None = None


class JobRunRead(BaseModel):
    job: str
    summary: dict[str, Any]
