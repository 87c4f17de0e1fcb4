"""
Core utilities and configuration for the crawl ingestion backend.

Modules:
    config: Application configuration and environment variable management
    database: Process-wide connection registry and catalog sessions
    exceptions: Custom exception hierarchy for error handling
    logging: Logging configuration

Usage:
    from core.config import settings
    from core.database import async_session_maker, registry
    from core.exceptions import APIExtractionError, NetworkError
    from core.logging import setup_logging
"""

__all__ = [
    "settings",
    "registry",
    "async_session_maker",
    "setup_logging",
    # Exceptions
    "ETLException",
    "ExtractionError",
    "APIExtractionError",
    "TransformationError",
    "ValidationError",
    "LoadError",
    "DatabaseError",
    "ProvisioningError",
    "RetryableError",
    "NonRetryableError",
    "NetworkError",
    "RateLimitError",
    "DatabaseConnectionError",
    "AuthenticationError",
    "ResourceNotFoundError",
    "SchemaValidationError",
    "DataFormatError",
    "EntityNotFoundError",
]
