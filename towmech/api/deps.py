"""
Shared FastAPI dependencies for the TowMech dispatch backend.

Provides the async database session dependency used by all route handlers
and the dispatch collaborators (payment gate, offer notifier, provider
directory), each of which can be swapped through ``dependency_overrides``.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from towmech.core.config import settings
from towmech.services.offerNotifier import (
    OfferNotifier,
    default_notifier,
    discard_offer_deliveries,
    release_offer_deliveries,
)
from towmech.services.paymentGate import PaymentGate, default_payment_gate
from towmech.services.providerDirectory import ProviderDirectory, default_directory

# ---------------------------------------------------------------------------
# Async engine & session factory
# ---------------------------------------------------------------------------
# The engine is created once at module import time.  The session factory
# produces lightweight ``AsyncSession`` instances that are scoped to a single
# request via the ``get_db`` dependency below.
# ---------------------------------------------------------------------------

engine = create_async_engine(
    settings.database_url,
    echo=settings.sql_echo,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    pool_pre_ping=True,
)

async_session_factory = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session that is committed when the request
    succeeds and rolled back when it raises.

    Offers queued by a broadcast round are released only after the commit.

    Usage in a route::

        @router.get("/items")
        async def list_items(db: DBSession):
            ...
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            discard_offer_deliveries(session)
            raise
        else:
            release_offer_deliveries(session)
        finally:
            await session.close()


DBSession = Annotated[AsyncSession, Depends(get_db)]


# ---------------------------------------------------------------------------
# Dispatch collaborators
# ---------------------------------------------------------------------------

def get_payment_gate() -> PaymentGate:
    return default_payment_gate


def get_offer_notifier() -> OfferNotifier:
    return default_notifier


def get_provider_directory() -> ProviderDirectory:
    return default_directory


PaymentGateDep = Annotated[PaymentGate, Depends(get_payment_gate)]
OfferNotifierDep = Annotated[OfferNotifier, Depends(get_offer_notifier)]
ProviderDirectoryDep = Annotated[ProviderDirectory, Depends(get_provider_directory)]
