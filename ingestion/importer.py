"""
Batch importer: drive a client's page stream through transform + upsert.

Each run:
- Streams pages from the tenant's client (since-id cursoring)
- Splits pages into sub-batches and checks the throttle before each one
- Imports items concurrently (bounded) with per-item retry
- Reports a structured result instead of raising on partial failure
"""

import asyncio
import time
from typing import Any, Dict, List, Optional, Tuple, Union

from core.config import settings
from core.exceptions import (
    ImportAbortedError,
    IngestionError,
    NonRetryableError,
    TransformationError,
    ValidationError,
)
from core.logging import get_logger
from ingestion.client import ShopifyClient
from ingestion.loaders.record_loader import RecordLoader
from ingestion.transformers.shopify_transformer import ShopifyTransformer
from models.base import ResourceType
from schemas.imports import ImportOptions, ImportResult, ItemOutcome

ALL = "all"

# Fixed order so parents exist before the orders that reference them
IMPORT_SEQUENCE = (ResourceType.CUSTOMERS, ResourceType.PRODUCTS, ResourceType.ORDERS)

RESOURCE_FILTERS = {
    ResourceType.CUSTOMERS: {},
    ResourceType.PRODUCTS: {"status": "active"},
    ResourceType.ORDERS: {"status": "any"},
}


def _iso(value) -> str:
    return value.isoformat()


class BatchImporter:
    """
    Import one tenant's resources.

    Attributes:
        client: The tenant's rate-limited API client
        loader: Persistence write contract
        tenant_id: Tenant that owns every written record
        transformer: Validation and mapping
    """

    def __init__(
        self,
        client: ShopifyClient,
        loader: RecordLoader,
        tenant_id: str,
        transformer: ShopifyTransformer,
        *,
        logger=None,
        sleep=None,
    ):
        self.client = client
        self.loader = loader
        self.tenant_id = tenant_id
        self.transformer = transformer
        self.log = logger or get_logger(__name__, tenant_id=tenant_id)
        self._sleep = sleep or asyncio.sleep

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def run(
        self,
        target: Union[str, ResourceType],
        options: Optional[ImportOptions] = None,
    ) -> Union[ImportResult, Dict[str, ImportResult]]:
        """
        Health-check the client, then import one resource or all of them.

        Raises:
            ImportAbortedError: The client cannot reach or authenticate with the API
        """
        if not await self.client.health_check():
            raise ImportAbortedError(
                "Health check failed, import not started",
                context={"tenant_id": self.tenant_id, "target": str(getattr(target, "value", target))}
            )
        if target == ALL:
            return await self.import_all(options)
        return await self.import_resource(ResourceType(target), options)

    async def import_customers(self, options: Optional[ImportOptions] = None) -> ImportResult:
        return await self.import_resource(ResourceType.CUSTOMERS, options)

    async def import_products(self, options: Optional[ImportOptions] = None) -> ImportResult:
        return await self.import_resource(ResourceType.PRODUCTS, options)

    async def import_orders(self, options: Optional[ImportOptions] = None) -> ImportResult:
        return await self.import_resource(ResourceType.ORDERS, options)

    async def import_all(self, options: Optional[ImportOptions] = None) -> Dict[str, ImportResult]:
        """Customers, then products, then orders. A failed resource does not stop the next."""
        results: Dict[str, ImportResult] = {}
        for resource in IMPORT_SEQUENCE:
            try:
                results[resource.value] = await self.import_resource(resource, options)
            except Exception as e:
                self.log.error(f"Import of {resource.value} failed: {e}")
                result = ImportResult(resource_type=resource.value, tenant_id=self.tenant_id)
                result.add_run_error(e)
                results[resource.value] = result
        return results

    def build_params(self, resource: ResourceType, options: ImportOptions) -> Dict[str, Any]:
        params: Dict[str, Any] = {"limit": settings.PAGE_SIZE}
        params.update(RESOURCE_FILTERS[resource])
        if options.date_range:
            if options.date_range.start:
                params["created_at_min"] = _iso(options.date_range.start)
            if options.date_range.end:
                params["created_at_max"] = _iso(options.date_range.end)
        if options.updated_at_min:
            params["updated_at_min"] = _iso(options.updated_at_min)
        if options.updated_at_max:
            params["updated_at_max"] = _iso(options.updated_at_max)
        return params

    async def import_resource(
        self,
        resource: ResourceType,
        options: Optional[ImportOptions] = None,
    ) -> ImportResult:
        resource = ResourceType(resource)
        options = options or ImportOptions()
        log = self.log.bind(resource=resource.value)
        result = ImportResult(
            resource_type=resource.value,
            tenant_id=self.tenant_id,
            dry_run=options.dry_run,
        )
        params = self.build_params(resource, options)
        semaphore = asyncio.Semaphore(options.concurrency)
        started = time.monotonic()

        log.info(
            f"Import started (batch_size={options.batch_size_for(resource)}, "
            f"concurrency={options.concurrency}, dry_run={options.dry_run})"
        )

        try:
            async for page in self.client.iter_pages(resource.value, params):
                result.pages += 1
                await self._process_page(resource, page, options, result, semaphore)
        except IngestionError as e:
            log.error(f"Page fetch failed after {result.pages} pages: {e}")
            result.add_run_error(e)

        result.duration_seconds = time.monotonic() - started
        if result.errors:
            result.success = False

        log.info(
            f"Import finished: imported={result.imported} skipped={result.skipped} "
            f"errors={result.errors} processed={result.processed} "
            f"duration={result.duration_seconds:.2f}s"
        )
        return result

    # ------------------------------------------------------------------
    # Batching
    # ------------------------------------------------------------------

    async def _process_page(
        self,
        resource: ResourceType,
        page: List[Dict[str, Any]],
        options: ImportOptions,
        result: ImportResult,
        semaphore: asyncio.Semaphore,
    ):
        batch_size = options.batch_size_for(resource)
        for start in range(0, len(page), batch_size):
            batch = page[start:start + batch_size]

            if self.client.is_throttled():
                wait = self.client.wait_time()
                self.log.info(f"Client throttled, pausing {wait:.2f}s before next batch")
                await self._sleep(wait)

            if options.dry_run:
                result.processed += len(batch)
                continue

            outcomes = await asyncio.gather(*(
                self._guarded_import(resource, record, options, semaphore)
                for record in batch
            ))
            for outcome, item_id, error, attempts in outcomes:
                result.record(outcome, item=item_id, error=error, attempts=attempts)

    async def _guarded_import(self, resource, record, options, semaphore):
        async with semaphore:
            try:
                return await self.import_item(resource, record, options)
            except Exception as e:
                item_id = str(record.get("id")) if isinstance(record, dict) else None
                self.log.error(f"Unexpected failure importing {resource.value} {item_id}: {e}")
                return ItemOutcome.FAILED, item_id, e, 1

    # ------------------------------------------------------------------
    # Single item
    # ------------------------------------------------------------------

    async def import_item(
        self,
        resource: ResourceType,
        record: Dict[str, Any],
        options: ImportOptions,
    ) -> Tuple[ItemOutcome, Optional[str], Optional[Exception], int]:
        """
        validate -> optional existence check -> transform -> upsert.

        Returns:
            (outcome, external id, error, attempts used)
        """
        item_id = str(record.get("id")) if isinstance(record, dict) and record.get("id") is not None else None

        try:
            parsed = self.transformer.parse(resource, record)
        except ValidationError as e:
            self.log.debug(f"Skipping invalid {resource.value} {item_id}: {e}")
            return ItemOutcome.SKIPPED_INVALID, item_id, None, 0

        item_id = str(parsed.id)

        if options.skip_existing:
            exists, error, attempts = await self._with_retry(
                options, self.loader.exists, resource, item_id, self.tenant_id
            )
            if error is not None:
                return ItemOutcome.FAILED, item_id, error, attempts
            if exists:
                return ItemOutcome.SKIPPED_EXISTING, item_id, None, attempts

        try:
            transformed = self.transformer.transform(resource, parsed, self.tenant_id)
        except TransformationError as e:
            self.log.warning(f"Transform failed for {resource.value} {item_id}: {e}")
            return ItemOutcome.FAILED, item_id, e, 1

        _, error, attempts = await self._with_retry(
            options, self.loader.upsert, resource, transformed
        )
        if error is not None:
            self.log.error(f"Giving up on {resource.value} {item_id} after {attempts} attempts: {error}")
            return ItemOutcome.FAILED, item_id, error, attempts
        return ItemOutcome.IMPORTED, item_id, None, attempts

    async def _with_retry(self, options: ImportOptions, func, *args):
        """
        Call ``func`` with exponential backoff.

        Returns:
            (value, error, attempts); error is set when every attempt failed
            or a non-retryable error was raised.
        """
        retry = options.retry
        last_error = None
        for attempt in range(retry.max_attempts):
            try:
                return await func(*args), None, attempt + 1
            except NonRetryableError as e:
                return None, e, attempt + 1
            except Exception as e:
                last_error = e
                if attempt < retry.max_attempts - 1:
                    delay = retry.delay_for(attempt)
                    self.log.warning(
                        f"Attempt {attempt + 1}/{retry.max_attempts} failed: {e}. "
                        f"Retrying in {delay}s"
                    )
                    await self._sleep(delay)
        return None, last_error, retry.max_attempts

    async def get_import_stats(self) -> Dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "counts": await self.loader.count_records(self.tenant_id),
            "last_sync": await self.loader.last_synced_at(self.tenant_id),
        }
