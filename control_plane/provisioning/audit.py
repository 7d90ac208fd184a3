"""
Provisioning Failure Audit Log

Append-only trail of terminal provisioning failures. Tenant rows are hard
deleted on rollback, so this log is what operators and support have left.
"""

from datetime import datetime
from typing import Any, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel, Field
from pymongo import ASCENDING, DESCENDING, IndexModel


class ProvisioningFailureRecord(BaseModel):
    """
    Provisioning failure audit entry.

    Stored in the platform database; never updated after insert.
    """

    tenant_id: str = Field(..., description="Tenant identifier")

    # Tenant snapshot
    name: str
    subdomain: str
    contact_email: str
    store_name: str = Field(default="")

    # Failure
    failed_step: Optional[str] = Field(default=None, description="Checkpoint at the time of failure")
    error: str
    error_type: str
    attempt: int = Field(default=1)

    # Compensation
    rollback_outcome: dict[str, Any] = Field(default_factory=dict)

    recorded_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        json_schema_extra = {
            "example": {
                "tenant_id": "5f1c3a9e0d6b4c2aa1e7f0b9c8d7e6f5",
                "name": "Acme",
                "subdomain": "acme",
                "contact_email": "admin@acme.test",
                "store_name": "tenant_acme",
                "failed_step": "migrating",
                "error": "Change-script '2024_01_01_000003_create_settings' failed",
                "error_type": "script_execution_failed",
                "attempt": 3,
                "rollback_outcome": {"store_dropped": True, "tenant_deleted": True},
            }
        }


class ProvisioningAuditService:
    """Service for the provisioning failure audit log."""

    def __init__(self, db: AsyncIOMotorDatabase):
        """
        Initialize audit service.

        Args:
            db: Platform database
        """
        self.collection = db["provisioning_failures"]

    async def ensure_indexes(self) -> None:
        """Create indexes for the audit collection."""
        await self.collection.create_indexes(
            [
                IndexModel([("tenant_id", ASCENDING)]),
                IndexModel([("recorded_at", DESCENDING)]),
                IndexModel([("error_type", ASCENDING), ("recorded_at", DESCENDING)]),
            ]
        )

    async def record(self, entry: ProvisioningFailureRecord) -> None:
        """Append one failure record."""
        await self.collection.insert_one(entry.model_dump())

    async def list_records(
        self,
        tenant_id: Optional[str] = None,
        error_type: Optional[str] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> list[ProvisioningFailureRecord]:
        """
        List failure records, newest first.

        Args:
            tenant_id: Filter by tenant
            error_type: Filter by error kind
            skip: Number of records to skip
            limit: Maximum records to return

        Returns:
            List of failure records
        """
        query: dict[str, Any] = {}
        if tenant_id:
            query["tenant_id"] = tenant_id
        if error_type:
            query["error_type"] = error_type

        cursor = self.collection.find(query, skip=skip, limit=limit, sort=[("recorded_at", DESCENDING)])

        records = []
        async for record_dict in cursor:
            record_dict.pop("_id", None)
            records.append(ProvisioningFailureRecord(**record_dict))

        return records

    async def count_records(self, tenant_id: Optional[str] = None) -> int:
        query: dict[str, Any] = {}
        if tenant_id:
            query["tenant_id"] = tenant_id
        return await self.collection.count_documents(query)
