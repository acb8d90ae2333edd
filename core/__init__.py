"""
Core utilities and configuration for the storefront ingestion backend.

This package provides foundational components used throughout the pipeline:

Modules:
    config: Application configuration and environment variable management
    database: Async engine and session management
    exceptions: Custom exception hierarchy for error handling
    logging: Logging configuration and contextual loggers
    security: Field-level encryption for PII and stored credentials

Usage:
    from core.config import settings
    from core.database import async_session_maker
    from core.exceptions import RateLimitError, NetworkError
    from core.logging import setup_logging, get_logger

Example:
    setup_logging()
    log = get_logger(__name__, tenant_id="acme")
    log.info("Import started")
"""

__all__ = [
    "settings",
    "async_session_maker",
    "setup_logging",
    "get_logger",
    "FieldEncryptor",
    # Exceptions
    "IngestionError",
    "ExtractionError",
    "APIClientError",
    "AuthenticationError",
    "ResourceNotFoundError",
    "RateLimitError",
    "NetworkError",
    "TransformationError",
    "ValidationError",
    "DataFormatError",
    "LoadError",
    "DatabaseError",
    "UpsertError",
    "SchedulerError",
    "TenantError",
    "TenantNotFoundError",
    "CredentialError",
    "ImportAbortedError",
    "ConfigurationError",
    "RetryableError",
    "NonRetryableError",
]
