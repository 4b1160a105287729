from dataclasses import dataclass
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import APIKeyHeader
from fastapi_limiter.depends import RateLimiter
from jose import jwt, JWTError
from sqlalchemy.orm import Session

from .config import settings
from .database import get_db
from .orchestrator import BookingOrchestrator
from .payment_gateway import PaymentGateway
from .policy import SettlementPolicy

api_key_header = APIKeyHeader(name="Authorization")


@dataclass
class CallerIdentity:
    user_id: str
    role: str


async def get_key_by_user_id_or_ip(request: Request) -> str:
    """
    Tries to get the user ID from the JWT token.
    If it fails (no token, invalid token), it falls back to the client's IP.
    """
    try:
        token = request.headers.get("Authorization")
        scheme, jwt_token = token.split()
        if scheme.lower() != "bearer":
            return request.client.host  # Fallback to IP

        payload = jwt.decode(jwt_token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        user_id = payload.get("sub")

        if user_id:
            return str(user_id)
    except (JWTError, ValueError, AttributeError, TypeError):
        # If token is invalid, missing, or malformed, limit by IP
        pass
    return request.client.host


def rate_limit(times: int, minutes: int):
    """Redis-backed limiter, or a no-op when rate limiting is switched off."""
    if not settings.RATE_LIMIT_ENABLED:
        async def no_limit():
            return None
        return no_limit
    return RateLimiter(times=times, minutes=minutes, identifier=get_key_by_user_id_or_ip)


async def get_current_caller(
        token: Annotated[str, Depends(api_key_header)]
) -> CallerIdentity:
    """
    Decodes the JWT from the 'Authorization: Bearer ...' header into the caller's id and role.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        scheme, jwt_token = token.split()
        if scheme.lower() != "bearer":
            raise credentials_exception
        payload = jwt.decode(jwt_token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except (JWTError, ValueError, AttributeError):
        raise credentials_exception

    user_id = payload.get("sub")
    if not user_id:
        raise credentials_exception
    return CallerIdentity(user_id=str(user_id), role=payload.get("role", "player"))


def require_role(*roles: str):
    async def check_role(caller: Annotated[CallerIdentity, Depends(get_current_caller)]) -> CallerIdentity:
        if caller.role not in roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
        return caller
    return check_role


def get_payment_gateway(request: Request) -> Optional[PaymentGateway]:
    # Built once in the lifespan handler
    return getattr(request.app.state, "payment_gateway", None)


def get_orchestrator(
        db: Session = Depends(get_db),
        gateway: Optional[PaymentGateway] = Depends(get_payment_gateway),
) -> BookingOrchestrator:
    return BookingOrchestrator(
        db=db,
        gateway=gateway,
        policy=SettlementPolicy.from_settings(settings),
        platform_payee_id=settings.PLATFORM_PAYEE_ID,
        currency=settings.CURRENCY,
        atomic_ledger=settings.LEDGER_ATOMIC_INCREMENT,
    )
