"""
Base Exception Class

This module contains ONLY the base exception class that all other exceptions inherit from.
All specialized exceptions are in their respective themed modules.
"""

from typing import Any


class TierCacheError(Exception):
    """
    Base exception for all cache engine errors.

    All custom exceptions inherit from this class to enable:
    - Consistent error handling
    - Structured error logging
    - Rich context for debugging

    Attributes:
        message: Error message
        key: Logical cache key the error relates to (if any)
        details: Additional error details (dict)

    Example:
        raise CachePersistenceError(
            "Failed to write entry",
            key="/blog/1",
            details={"failed_commands": 1}
        )
    """

    def __init__(
        self, message: str, key: str | None = None, details: dict[str, Any] | None = None
    ):
        self.message = message
        self.key = key
        self.details = (details or {}).copy()  # Create a copy to prevent external modification
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to dictionary for logging.

        Returns:
            Dict with error_type, message, key, and details
        """
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "key": self.key,
            "details": self.details,
        }

    def __repr__(self) -> str:
        details_str = f", details={self.details}" if self.details else ""
        key_str = f", key='{self.key}'" if self.key else ""
        return f"{self.__class__.__name__}(message='{self.message}'{key_str}{details_str})"

    @classmethod
    def from_exception(
        cls,
        exc: Exception,
        message: str | None = None,
        key: str | None = None,
        **details
    ) -> "TierCacheError":
        """
        Create an error from another exception.

        Useful for wrapping redis-py exceptions at the layer boundary.

        Example:
            >>> try:
            ...     await client.ping()
            ... except redis.ConnectionError as e:
            ...     raise CacheConnectionError.from_exception(e, url="redis://...")
        """
        error_message = message or str(exc)
        error_details = {
            "original_error": exc.__class__.__name__,
            "original_message": str(exc),
            **details
        }
        return cls(error_message, key=key, details=error_details)
