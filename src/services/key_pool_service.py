"""
Key pool: decides which credential an owner's next call is charged to.

Order of preference:
    1. the owner's active credentials, oldest first, first with budget left
    2. the shared default credential (from settings), if it has budget
    3. nothing: the owner is done for the day

Owners without any active credential go straight to the shared default.
Budget is only checked here; the executor consumes it after choosing.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.orm import Session

from src.core.config import settings
from src.core.credentials import decrypt_api_key, mask_api_key
from src.dtos.budget_dto import CredentialInfo, CredentialRead, ProfileSlots
from src.entities.api_credential import ApiCredential
from src.entities.rate_budget import DEFAULT_CREDENTIAL_ID
from src.repositories.api_credential_repo import ApiCredentialRepository
from src.repositories.search_profile_repo import SearchProfileRepository
from src.services.budget_ledger_service import BudgetLedger

logger = logging.getLogger(__name__)


class KeyPoolManager:
    def __init__(
        self,
        session: Session,
        ledger: Optional[BudgetLedger] = None,
        *,
        default_api_key: Optional[str] = None,
        default_daily_limit: Optional[int] = None,
    ) -> None:
        self.session = session
        self.ledger = ledger or BudgetLedger(session)
        self.credential_repo = ApiCredentialRepository(session)
        self.profile_repo = SearchProfileRepository(session)
        self.default_api_key = (
            default_api_key if default_api_key is not None else settings.SEARCH_API_KEY
        )
        self.default_daily_limit = default_daily_limit or settings.DEFAULT_DAILY_LIMIT

    def next_available_key(
        self, owner_id: Optional[str], api_name: str
    ) -> Optional[CredentialInfo]:
        """
        Pick the credential the owner's next call should use.

        Returns:
            CredentialInfo with the decrypted key, or None if every
            candidate is exhausted for today
        """
        if owner_id:
            for credential in self.credential_repo.get_active_for_owner(owner_id, api_name):
                info = self._owned_key(credential, api_name)
                if info is not None:
                    return info
        return self._default_key(api_name)

    def _owned_key(
        self, credential: ApiCredential, api_name: str
    ) -> Optional[CredentialInfo]:
        if credential.is_unlimited:
            return CredentialInfo(
                credential_id=credential.id,
                api_key=decrypt_api_key(credential.encrypted_key),
                daily_limit=None,
                remaining=None,
            )
        remaining = self.ledger.remaining_calls(
            api_name, credential.id, credential.daily_limit
        )
        if remaining <= 0:
            logger.debug("Credential %s exhausted for today", credential.id)
            return None
        return CredentialInfo(
            credential_id=credential.id,
            api_key=decrypt_api_key(credential.encrypted_key),
            daily_limit=credential.daily_limit,
            remaining=remaining,
        )

    def _default_key(self, api_name: str) -> Optional[CredentialInfo]:
        if not self.default_api_key:
            return None
        remaining = self.ledger.remaining_calls(
            api_name, DEFAULT_CREDENTIAL_ID, self.default_daily_limit
        )
        if remaining <= 0:
            return None
        return CredentialInfo(
            credential_id=DEFAULT_CREDENTIAL_ID,
            api_key=self.default_api_key,
            daily_limit=self.default_daily_limit,
            remaining=remaining,
        )

    def total_remaining(self, api_name: str) -> Optional[int]:
        """
        Budget left today across every active credential plus the default.

        Returns None when an unlimited credential makes the pool uncapped.
        """
        total = 0
        for credential in self.credential_repo.get_all_active(api_name):
            if credential.is_unlimited:
                return None
            total += self.ledger.remaining_calls(
                api_name, credential.id, credential.daily_limit
            )
        if self.default_api_key:
            total += self.ledger.remaining_calls(
                api_name, DEFAULT_CREDENTIAL_ID, self.default_daily_limit
            )
        return total

    def profile_slots(self, owner_id: str) -> ProfileSlots:
        """Informational: one slot for the shared key plus one per owned key."""
        total = 1 + self.credential_repo.count_active_for_owner(owner_id)
        used = self.profile_repo.count_active_for_owner(owner_id)
        return ProfileSlots(used=used, total=total, remaining=max(0, total - used))

    def register_credential(
        self,
        owner_id: str,
        api_key: str,
        *,
        api_name: str,
        label: Optional[str] = None,
        daily_limit: int = 100,
        is_unlimited: bool = False,
    ) -> CredentialRead:
        credential = self.credential_repo.create_credential(
            owner_id,
            api_key,
            api_name=api_name,
            label=label,
            daily_limit=daily_limit,
            is_unlimited=is_unlimited,
        )
        logger.info("Registered %s credential %s for owner %s", api_name, credential.id, owner_id)
        return self._to_read(credential)

    def list_credentials(self, owner_id: str) -> list[CredentialRead]:
        return [self._to_read(c) for c in self.credential_repo.get_for_owner(owner_id)]

    @staticmethod
    def _to_read(credential: ApiCredential) -> CredentialRead:
        read = CredentialRead.model_validate(credential)
        read.api_key_masked = mask_api_key(decrypt_api_key(credential.encrypted_key))
        return read
