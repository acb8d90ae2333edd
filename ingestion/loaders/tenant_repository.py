"""
Tenant credential storage (secrets encrypted at rest)
"""

from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from core.exceptions import DatabaseError
from core.logging import get_logger
from core.security import FieldEncryptor
from models.base import utcnow
from models.tenant import Tenant
from schemas.tenant import TenantCredential


class TenantRepository:
    """
    Persist tenant credentials.

    At most one active row per tenant: saving a credential deactivates any
    earlier active one in the same transaction.
    """

    def __init__(self, session_factory, encryptor: FieldEncryptor, logger=None):
        self.session_factory = session_factory
        self.encryptor = encryptor
        self.log = logger or get_logger(__name__)

    @staticmethod
    def _deactivate_stmt(tenant_id: str):
        return (
            update(Tenant)
            .where(Tenant.tenant_id == tenant_id, Tenant.is_active.is_(True))
            .values(
                is_active=False,
                access_token_encrypted=None,
                webhook_secret_encrypted=None,
                deactivated_at=utcnow(),
            )
        )

    async def save(self, credential: TenantCredential) -> None:
        try:
            async with self.session_factory.begin() as session:
                await session.execute(self._deactivate_stmt(credential.tenant_id))
                session.add(Tenant(
                    tenant_id=credential.tenant_id,
                    shop_domain=credential.shop_domain,
                    api_version=credential.api_version,
                    access_token_encrypted=self.encryptor.encrypt(credential.access_token),
                    webhook_secret_encrypted=self.encryptor.encrypt(credential.webhook_secret),
                    is_active=True,
                ))
        except SQLAlchemyError as e:
            raise DatabaseError(
                "Failed to save tenant credential",
                context={"operation": "INSERT", "table_name": Tenant.__tablename__,
                         "tenant_id": credential.tenant_id},
                original_exception=e
            )
        self.log.info(f"Saved credential for tenant {credential.tenant_id}")

    async def deactivate(self, tenant_id: str) -> bool:
        async with self.session_factory.begin() as session:
            result = await session.execute(self._deactivate_stmt(tenant_id))
            changed = (result.rowcount or 0) > 0
        if changed:
            self.log.info(f"Deactivated credential for tenant {tenant_id}")
        return changed

    def _to_credential(self, row: Tenant) -> TenantCredential:
        return TenantCredential(
            tenant_id=row.tenant_id,
            shop_domain=row.shop_domain,
            api_version=row.api_version,
            access_token=self.encryptor.decrypt(row.access_token_encrypted),
            webhook_secret=self.encryptor.decrypt(row.webhook_secret_encrypted),
            is_active=row.is_active,
        )

    async def list_active(self) -> List[TenantCredential]:
        async with self.session_factory() as session:
            result = await session.execute(select(Tenant).where(Tenant.is_active.is_(True)))
            rows = list(result.scalars())
        return [self._to_credential(row) for row in rows]

    async def get_active(self, tenant_id: str) -> Optional[TenantCredential]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Tenant).where(Tenant.tenant_id == tenant_id, Tenant.is_active.is_(True))
            )
            row = result.scalars().first()
        return self._to_credential(row) if row else None
