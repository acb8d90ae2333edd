"""
Import run options and results
"""

import enum
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from core.config import settings
from models.base import ResourceType


class ItemOutcome(str, enum.Enum):
    """Outcome of importing a single source record"""
    IMPORTED = "imported"
    SKIPPED_INVALID = "skipped_invalid"
    SKIPPED_EXISTING = "skipped_existing"
    FAILED = "failed"


class RetryOptions(BaseModel):
    """Exponential backoff: min(min_timeout * factor ** attempt, max_timeout)"""
    max_attempts: int = Field(default_factory=lambda: settings.MAX_RETRIES, ge=1)
    factor: float = Field(default_factory=lambda: settings.RETRY_FACTOR, ge=1)
    min_timeout: float = Field(default_factory=lambda: settings.RETRY_MIN_TIMEOUT, ge=0)
    max_timeout: float = Field(default_factory=lambda: settings.RETRY_MAX_TIMEOUT, ge=0)

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number ``attempt`` (0-based)."""
        return min(self.min_timeout * (self.factor ** attempt), self.max_timeout)


class DateRange(BaseModel):
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    @model_validator(mode="after")
    def check_order(self):
        if self.start and self.end and self.start > self.end:
            raise ValueError("date range start must not be after end")
        return self


class ImportOptions(BaseModel):
    """
    Options for one import run.

    ``date_range`` bounds records by creation time, ``updated_at_min`` /
    ``updated_at_max`` bound incremental runs by modification time.
    ``batch_size`` of None picks the per-resource default.
    """
    batch_size: Optional[int] = Field(None, ge=1)
    concurrency: int = Field(default_factory=lambda: settings.IMPORT_CONCURRENCY, ge=1)
    retry: RetryOptions = Field(default_factory=RetryOptions)
    skip_existing: bool = False
    dry_run: bool = False
    date_range: Optional[DateRange] = None
    updated_at_min: Optional[datetime] = None
    updated_at_max: Optional[datetime] = None

    def batch_size_for(self, resource: ResourceType) -> int:
        if self.batch_size:
            return self.batch_size
        if ResourceType(resource) == ResourceType.ORDERS:
            return settings.IMPORT_ORDER_BATCH_SIZE
        return settings.IMPORT_BATCH_SIZE


class ErrorDetail(BaseModel):
    item: Optional[str] = None
    error: str
    error_type: Optional[str] = None
    attempts: int = 1


class ImportResult(BaseModel):
    """Structured outcome of an import run; partial failure is reported here, not raised"""
    resource_type: str
    tenant_id: str
    success: bool = True
    imported: int = 0
    skipped: int = 0
    skipped_invalid: int = 0
    skipped_existing: int = 0
    errors: int = 0
    processed: int = 0
    pages: int = 0
    duration_seconds: float = 0.0
    dry_run: bool = False
    error_details: List[ErrorDetail] = Field(default_factory=list)

    def record(self, outcome: ItemOutcome, item: Optional[str] = None,
               error: Optional[Exception] = None, attempts: int = 1):
        """Fold one item outcome into the running totals."""
        self.processed += 1
        if outcome == ItemOutcome.IMPORTED:
            self.imported += 1
        elif outcome == ItemOutcome.SKIPPED_INVALID:
            self.skipped += 1
            self.skipped_invalid += 1
        elif outcome == ItemOutcome.SKIPPED_EXISTING:
            self.skipped += 1
            self.skipped_existing += 1
        elif outcome == ItemOutcome.FAILED:
            self.errors += 1
            self.error_details.append(ErrorDetail(
                item=item,
                error=getattr(error, "message", None) or str(error),
                error_type=type(error).__name__ if error else None,
                attempts=attempts,
            ))

    def add_run_error(self, error: Exception):
        """A failure outside any single item (page fetch, ...)."""
        self.success = False
        self.error_details.append(ErrorDetail(
            item=None,
            error=getattr(error, "message", None) or str(error),
            error_type=type(error).__name__,
        ))

    def summary(self) -> Dict[str, Any]:
        return {
            "imported": self.imported,
            "skipped": self.skipped,
            "errors": self.errors,
            "duration_seconds": round(self.duration_seconds, 3),
        }
