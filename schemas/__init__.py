"""
Pydantic schemas for data validation and serialization.

Schemas:
    shopify: Strict schemas for records received from the storefront platform
    records: Internal tenant-scoped records produced by the transformer
    imports: Import run options, retry policy and structured results
    tenant: Tenant credential held by the coordinator
    api: HTTP request/response models

Usage:
    from schemas.shopify import ShopifyOrder
    from schemas.imports import ImportOptions, ImportResult
    from schemas.tenant import TenantCredential

Validation:
    External payloads are parsed into the shopify models before any field
    is trusted. Monetary strings become Decimal; a value that cannot be
    parsed invalidates the record instead of defaulting to zero.
"""

__all__ = [
    "ShopifyCustomer",
    "ShopifyProduct",
    "ShopifyOrder",
    "CustomerRecord",
    "ProductRecord",
    "OrderRecord",
    "LineItemRecord",
    "OrderEventRecord",
    "OrderAggregate",
    "TransformedBatch",
    "ImportOptions",
    "ImportResult",
    "RetryOptions",
    "DateRange",
    "TenantCredential",
]
