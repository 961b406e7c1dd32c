"""
schemas/errors.py — Structured error response model

Shared by the AutoRfpError, HTTPException and RequestValidationError
handlers in main.py.
"""

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    error: str
    code: str
    status_code: int
    detail: dict | list | None = None
