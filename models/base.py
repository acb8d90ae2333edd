from datetime import datetime, timezone
from sqlalchemy import BigInteger, Integer, JSON
from sqlalchemy.orm import declarative_base
from sqlalchemy.dialects.postgresql import JSONB
import enum

Base = declarative_base()

# BIGSERIAL on PostgreSQL, INTEGER PRIMARY KEY (rowid) on SQLite
IdType = BigInteger().with_variant(Integer(), "sqlite")

# JSONB on PostgreSQL, plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# ENUMS
# ============================================================================

class ResourceType(str, enum.Enum):
    """Source resource types"""
    CUSTOMERS = "customers"
    PRODUCTS = "products"
    ORDERS = "orders"


class JobState(str, enum.Enum):
    """Scheduled job run state"""
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class OrderStatus(str, enum.Enum):
    """Derived order status"""
    PENDING = "pending"
    FULFILLED = "fulfilled"
    CANCELLED = "cancelled"


class OrderEventType(str, enum.Enum):
    """Order lifecycle event kinds"""
    CREATED = "created"
    UPDATED = "updated"
    PAID = "paid"
    FULFILLED = "fulfilled"
    CANCELLED = "cancelled"


class WebhookEventStatus(str, enum.Enum):
    """Inbound notification processing state"""
    RECEIVED = "received"
    PROCESSED = "processed"
    FAILED = "failed"
    IGNORED = "ignored"
