"""
Provider Directory
==================

Read-only view of provider presence used by the matching engine. The
directory answers one question: which providers of a role are online,
approved and not excluded from the job at hand.

``ProviderDirectory`` is a Protocol so matching can run against any
presence source; ``SqlProviderDirectory`` reads the ``providers`` table.
"""

from __future__ import annotations

import uuid
from typing import Iterable, Protocol, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from towmech.models.provider import Provider, ProviderRole, VerificationStatus


class ProviderDirectory(Protocol):
    async def find_candidates(
        self,
        db: AsyncSession,
        *,
        role: ProviderRole,
        excluded_provider_ids: Iterable[uuid.UUID] = (),
    ) -> Sequence[Provider]:
        ...


class SqlProviderDirectory:
    """Provider presence backed by the ``providers`` table."""

    async def find_candidates(
        self,
        db: AsyncSession,
        *,
        role: ProviderRole,
        excluded_provider_ids: Iterable[uuid.UUID] = (),
    ) -> Sequence[Provider]:
        excluded = list(excluded_provider_ids)
        stmt = (
            select(Provider)
            .where(
                Provider.role == role,
                Provider.is_online.is_(True),
                Provider.verification_status == VerificationStatus.APPROVED,
            )
            .order_by(Provider.id)
        )
        if excluded:
            stmt = stmt.where(Provider.id.notin_(excluded))
        result = await db.execute(stmt)
        return result.scalars().all()


default_directory = SqlProviderDirectory()
