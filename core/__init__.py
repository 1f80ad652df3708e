"""
Core utilities and configuration for the synchronization service.

Modules:
    config: Application configuration and environment variable management
    database: Async engine and session management
    exceptions: Exception hierarchy mirroring the engine's error taxonomy
    logging: Logging configuration

Usage:
    from core.config import settings
    from core.database import async_session_maker, engine
    from core.exceptions import SourceUnreachable, PersistenceFailure
    from core.logging import setup_logging
"""

__all__ = [
    "settings",
    "engine",
    "async_session_maker",
    "setup_logging",
    # Exceptions
    "SyncException",
    "ConfigurationMissing",
    "RetryableError",
    "NonRetryableError",
    "SourceUnreachable",
    "SourceNetworkError",
    "SourceRateLimitError",
    "SourceAuthenticationError",
    "SourceQueryError",
    "SourceConfigurationError",
    "SchemaEvolutionFailure",
    "RowSyncFailure",
    "PersistenceFailure",
]
