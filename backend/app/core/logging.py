"""
Logging configuration with automatic sensitive data redaction.

The verification worker handles a signing key and backend bearer tokens;
neither may ever reach log output.
"""

import logging
import re
import sys
from typing import Any, Dict, List, Set
import structlog
from structlog.stdlib import LoggerFactory

from app.core.config import settings


class SensitiveDataRedactor:
    """
    Redacts sensitive data from log entries.

    Handles:
    - Exact key matches (private_key, token, sig, etc.)
    - Pattern-based key matches (contains 'token', 'secret', etc.)
    - Nested dictionaries and lists
    - Partial redaction of client IPs (first octet kept)
    """

    # Keys that should be fully redacted (exact match, case-insensitive)
    FULLY_REDACTED_KEYS: Set[str] = {
        "private_key",
        "privatekey",
        "worker_private_key",
        "secret",
        "password",
        "access_token",
        "bearer_token",
        "jwt",
        "jwt_token",
        "auth_token",
        "authorization",
        "cookie",
        "sig",
        "signature",
        "nonce",
    }

    # Key patterns that should be fully redacted (substring match)
    REDACTED_KEY_PATTERNS: List[str] = [
        "password",
        "secret",
        "token",
        "credential",
        "private_key",
        "signature",
    ]

    # Keys that should be partially redacted
    PARTIALLY_REDACTED_KEYS: Set[str] = {
        "client_ip",
        "ip",
    }

    # Regex patterns for detecting sensitive data in values
    VALUE_PATTERNS = {
        "jwt": re.compile(r"eyJ[a-zA-Z0-9_-]*\.eyJ[a-zA-Z0-9_-]*\.[a-zA-Z0-9_-]*"),
        "bearer": re.compile(r"Bearer\s+[a-zA-Z0-9._-]+", re.IGNORECASE),
        # secp256k1 private keys are 32 bytes; commit SHAs (20 bytes) stay visible
        "private_key": re.compile(r"\b(0x)?[0-9a-fA-F]{64}\b"),
        # 65-byte recoverable signatures
        "signature": re.compile(r"\b0x[0-9a-fA-F]{130}\b"),
    }

    REDACTED_PLACEHOLDER = "[REDACTED]"

    def __init__(self, enabled: bool = True):
        self.enabled = enabled
        # Pre-compile lowercase versions for faster lookup
        self._fully_redacted_lower = {k.lower() for k in self.FULLY_REDACTED_KEYS}
        self._partially_redacted_lower = {k.lower() for k in self.PARTIALLY_REDACTED_KEYS}

    def redact(self, data: Any, key: str = None) -> Any:
        """
        Recursively redact sensitive data.

        Args:
            data: The data to redact (can be dict, list, or primitive)
            key: The key name if this data is a value in a dict

        Returns:
            Redacted version of the data
        """
        if not self.enabled:
            return data

        if data is None:
            return None

        if key:
            key_lower = key.lower()

            if key_lower in self._fully_redacted_lower:
                return self.REDACTED_PLACEHOLDER

            for pattern in self.REDACTED_KEY_PATTERNS:
                if pattern in key_lower:
                    return self.REDACTED_PLACEHOLDER

            if key_lower in self._partially_redacted_lower:
                return self._partial_redact(data, key_lower)

        if isinstance(data, dict):
            return {k: self.redact(v, k) for k, v in data.items()}

        if isinstance(data, (list, tuple)):
            return [self.redact(item) for item in data]

        if isinstance(data, str):
            return self._redact_string_value(data)

        return data

    def _partial_redact(self, value: Any, key_type: str) -> str:
        """Partially redact a value, preserving some information for debugging."""
        value_str = str(value)

        if not value_str:
            return value_str

        # IP address: show first octet only
        if "ip" in key_type:
            parts = value_str.split(".")
            if len(parts) == 4:
                return f"{parts[0]}.***.***"
            return "***"

        if len(value_str) > 4:
            return f"****{value_str[-4:]}"
        return "****"

    def _redact_string_value(self, value: str) -> str:
        """Check string values for sensitive patterns and redact them."""
        if not value or len(value) < 10:
            return value

        result = value
        result = self.VALUE_PATTERNS["jwt"].sub("[JWT_REDACTED]", result)
        result = self.VALUE_PATTERNS["bearer"].sub("Bearer [REDACTED]", result)
        result = self.VALUE_PATTERNS["signature"].sub("[SIGNATURE_REDACTED]", result)
        result = self.VALUE_PATTERNS["private_key"].sub("[KEY_REDACTED]", result)
        return result


def sensitive_data_redactor_processor(
    logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Structlog processor that redacts sensitive data from log events.

    This processor runs before the final renderer (JSON/Console) to ensure
    sensitive data never reaches log output.
    """
    return _redactor.redact(event_dict)


def setup_logging() -> None:
    """Setup structured logging with automatic sensitive data redaction."""

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            sensitive_data_redactor_processor,
            structlog.processors.JSONRenderer()
            if settings.LOG_FORMAT == "json"
            else structlog.dev.ConsoleRenderer(),
        ],
        context_class=dict,
        logger_factory=LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.LOG_LEVEL.upper()),
    )

    # Set specific loggers to reduce noise
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger"""
    return structlog.get_logger(name)


# Global redactor instance for manual use
_redactor = SensitiveDataRedactor()


def redact_sensitive_data(data: Any) -> Any:
    """
    Manually redact sensitive data from any data structure.

    Use this before echoing backend payloads into error messages or logs.

    Example:
        >>> redact_sensitive_data({"token": "eyJ...", "address": "0xabc"})
        {'token': '[REDACTED]', 'address': '0xabc'}
    """
    return _redactor.redact(data)


def get_redactor() -> SensitiveDataRedactor:
    """Get the global SensitiveDataRedactor instance."""
    return _redactor
