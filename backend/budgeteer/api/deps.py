"""FastAPI dependency injection — account resolution from the bearer token."""
import logging
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from budgeteer import config
from budgeteer.db import get_db
from budgeteer.models.orm_models import Account
from budgeteer.services.errors import Unauthenticated

logger = logging.getLogger("budgeteer-auth")

security = HTTPBearer(auto_error=False)


def decode_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, config.JWT_SECRET_KEY, algorithms=[config.JWT_ALGORITHM])
    except JWTError:
        raise Unauthenticated("Invalid token")
    if not payload.get("sub"):
        raise Unauthenticated("Invalid token")
    return payload


def create_access_token(external_user_id: str, **claims) -> str:
    """Sign a token for an identity-provider user id (dev tooling and tests)."""
    return jwt.encode(
        {"sub": external_user_id, **claims}, config.JWT_SECRET_KEY, algorithm=config.JWT_ALGORITHM
    )


async def resolve_account_id(db: AsyncSession, token: Optional[str]) -> int:
    """
    Map the token's subject (external user id) to the internal account id.

    The first request of a new identity provisions its account; a
    deactivated account is refused.
    """
    if not token:
        raise Unauthenticated()
    payload = decode_token(token)
    external_id = str(payload["sub"])

    result = await db.execute(select(Account).where(Account.external_user_id == external_id))
    account = result.scalar_one_or_none()
    if account is None:
        account = Account(
            external_user_id=external_id,
            email=payload.get("email"),
            full_name=payload.get("name"),
        )
        db.add(account)
        await db.flush()
        logger.info("Account %s provisioned for external user %s", account.id, external_id)
    elif not account.is_active:
        raise Unauthenticated("Account is inactive")
    return account.id


async def get_current_account_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> int:
    return await resolve_account_id(db, credentials.credentials if credentials else None)
