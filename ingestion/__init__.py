"""
Ingestion pipeline components.

Two paths converge on the same idempotent upsert contract:

    pull: SyncScheduler -> BatchImporter -> ShopifyClient -> ShopifyTransformer -> RecordLoader
    push: WebhookReceiver -> ShopifyTransformer -> RecordLoader

Modules:
    client: Per-tenant rate-limited API client and client registry
    importer: Batch importer with bounded concurrency and per-item retry
    webhooks: Signature-verified webhook receiver
    scheduler: Cron job registry with an at-most-one execution wrapper
    coordinator: Tenant onboarding/offboarding and component wiring

Subpackages:
    transformers: Validation and mapping of source records
    loaders: Record upserts, webhook event storage and tenant credentials

Usage:
    from ingestion.coordinator import IngestionCoordinator

    coordinator = IngestionCoordinator()
    await coordinator.initialize()
    await coordinator.add_tenant("acme", {
        "shop_domain": "acme.myshopify.com",
        "access_token": "shpat_xxx",
        "webhook_secret": "whsec_xxx",
    })
    result = await coordinator.import_data("acme", "customers")
    print(result.summary())

Error Handling:
    Item-level failures are retried and then reported in the ImportResult;
    only the inability to start a run (unknown tenant, failed health check)
    raises to the caller.
"""

__all__ = [
    "ShopifyClient",
    "ClientManager",
    "RateLimitState",
    "ShopifyTransformer",
    "BatchImporter",
    "RecordLoader",
    "TenantRepository",
    "WebhookReceiver",
    "SyncScheduler",
    "IngestionCoordinator",
]
