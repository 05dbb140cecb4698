"""
Error Kinds

Every failure the engine reports is one of four kinds, each with a stable
category string so callers can tell bad input, missing entities, rejected
state transitions and storage failures apart.
"""

from typing import Optional


class LoanEngineError(Exception):
    """Base class for all loan engine errors"""
    category = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(LoanEngineError):
    """Malformed or out-of-range input"""
    category = "invalid_input"

    def __init__(self, field: str, message: Optional[str] = None):
        super().__init__(message or f"Invalid value for '{field}'")
        self.field = field


class NotFoundError(LoanEngineError):
    """Referenced loan or installment does not exist"""
    category = "not_found"


class ConflictError(LoanEngineError):
    """State transition precondition violated"""
    category = "conflict"


class PersistenceError(LoanEngineError):
    """Storage layer failed to complete an atomic operation"""
    category = "persistence_failure"
