"""Response Envelope — uniform success body for user-facing endpoints.

Invariants:
    - success is derived from status_code (< 400), never set by callers
"""

from typing import Any

from pydantic import BaseModel


class ApiResponse(BaseModel):
    status_code: int
    data: Any = None
    message: str = "Success"
    success: bool = True

    @classmethod
    def of(cls, status_code: int, data: Any, message: str = "Success") -> "ApiResponse":
        return cls(
            status_code=status_code, data=data, message=message,
            success=status_code < 400,
        )
