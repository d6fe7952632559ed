"""
Repository for owner-registered API credentials.
"""

from __future__ import annotations

from typing import List

from sqlalchemy import select
from sqlalchemy.orm import Session

from src.core.credentials import encrypt_api_key
from src.entities.api_credential import ApiCredential
from src.repositories.base_repo import BaseRepository


class ApiCredentialRepository(BaseRepository[ApiCredential]):
    def __init__(self, session: Session) -> None:
        super().__init__(session=session, model=ApiCredential)

    def create_credential(
        self,
        owner_id: str,
        api_key: str,
        *,
        api_name: str,
        label: str | None = None,
        daily_limit: int = 100,
        is_unlimited: bool = False,
    ) -> ApiCredential:
        """Store *api_key* in its encrypted envelope."""
        credential = ApiCredential(
            owner_id=owner_id,
            api_name=api_name,
            encrypted_key=encrypt_api_key(api_key),
            label=label,
            daily_limit=daily_limit,
            is_active=True,
            is_unlimited=is_unlimited,
        )
        return self.create(credential, commit=True)

    def get_active_for_owner(self, owner_id: str, api_name: str) -> List[ApiCredential]:
        """Active credentials in a stable order (oldest first)."""
        stmt = (
            select(ApiCredential)
            .where(
                ApiCredential.owner_id == owner_id,
                ApiCredential.api_name == api_name,
                ApiCredential.is_active.is_(True),
            )
            .order_by(ApiCredential.created_at, ApiCredential.id)
        )
        return list(self.session.execute(stmt).scalars().all())

    def get_all_active(self, api_name: str) -> List[ApiCredential]:
        stmt = select(ApiCredential).where(
            ApiCredential.api_name == api_name,
            ApiCredential.is_active.is_(True),
        )
        return list(self.session.execute(stmt).scalars().all())

    def get_for_owner(self, owner_id: str) -> List[ApiCredential]:
        stmt = (
            select(ApiCredential)
            .where(ApiCredential.owner_id == owner_id)
            .order_by(ApiCredential.created_at, ApiCredential.id)
        )
        return list(self.session.execute(stmt).scalars().all())

    def count_active_for_owner(self, owner_id: str) -> int:
        return self.count(
            ApiCredential.owner_id == owner_id,
            ApiCredential.is_active.is_(True),
        )
