from typing import Any, Optional
from pydantic import BaseModel


class OperationResult(BaseModel):
    """Uniform envelope returned for every workflow operation"""
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, data: Any = None) -> "OperationResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> "OperationResult":
        return cls(success=False, error=error)
