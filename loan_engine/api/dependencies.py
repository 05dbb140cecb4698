"""
System wiring and authentication dependencies
"""

from typing import Optional

import jwt
from fastapi import Depends, Header, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from ..audit import AuditTrail
from ..auth import AuthContext, Role
from ..config import LoanEngineConfig, get_config
from ..manager import LoanManager
from ..repository import StorageLoanRepository
from ..storage import StorageInterface, create_storage


class LoanSystem:
    """Loan engine with all components initialized"""

    def __init__(self, config: Optional[LoanEngineConfig] = None,
                 storage: Optional[StorageInterface] = None, clock=None):
        self.config = config or get_config()
        self.storage = storage or create_storage(self.config.storage_backend, self.config.database_path)
        self.audit_trail = AuditTrail(self.storage)
        self.repository = StorageLoanRepository(self.storage)
        self.loan_manager = LoanManager(
            self.repository, self.audit_trail, config=self.config, clock=clock
        )

    def close(self) -> None:
        self.storage.close()


_system: Optional[LoanSystem] = None


def get_loan_system() -> LoanSystem:
    """Dependency returning the process-wide loan system, built on first use"""
    global _system
    if _system is None:
        _system = LoanSystem()
    return _system


# JWT Security
security = HTTPBearer(auto_error=False)


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    x_user_id: Optional[str] = Header(None),
    x_role: Optional[str] = Header(None),
    system: LoanSystem = Depends(get_loan_system)
) -> AuthContext:
    """Dependency that validates the bearer JWT and returns the caller"""
    config = system.config
    if not config.auth_enabled:
        # For tests when auth is disabled
        return AuthContext(user_id=x_user_id or "test_user", role=_parse_role(x_role or "USER"))

    if not credentials:
        raise HTTPException(status_code=401, detail="Please login to access this resource")
    try:
        payload = jwt.decode(credentials.credentials, config.jwt_secret, algorithms=[config.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Access token is not valid")

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")
    return AuthContext(user_id=str(user_id), role=_parse_role(payload.get("role", "USER")))


def require_role(*roles: Role):
    """Dependency factory for role checking"""
    def check(user: AuthContext = Depends(get_current_user)) -> AuthContext:
        if user.role not in roles:
            raise HTTPException(
                status_code=403,
                detail=f"Role: {user.role.value} is not allowed to access this resource"
            )
        return user
    return check


def _parse_role(value) -> Role:
    try:
        return Role(str(value).upper())
    except ValueError:
        raise HTTPException(status_code=403, detail=f"Unknown role: {value}")
