"""
Configuration for the SQS relay.

Supports loading configuration from:
- YAML/JSON files
- Environment variables
- Command line arguments

The resulting RelayConfig is immutable; overrides produce a new instance.
"""

import os
import json
import logging
from dataclasses import dataclass, field, fields, replace
from typing import Optional, Dict, Any, List
from pathlib import Path
from urllib.parse import urlparse

from sqs_relay.retry_handler import BackoffPolicy

logger = logging.getLogger(__name__)

# SQS hard limits
MAX_BATCH_SIZE = 10
MAX_WAIT_TIME_SECONDS = 20
MAX_VISIBILITY_TIMEOUT = 43200

# Attribute name -> header name. Covers both ingress templates: one writes
# a generic content-type attribute, the other only the GitHub headers.
DEFAULT_HEADER_ATTRIBUTES: Dict[str, str] = {
    "Content-Type": "Content-Type",
    "ContentType": "Content-Type",
    "X-GitHub-Event": "X-GitHub-Event",
    "X-GitHub-Delivery": "X-GitHub-Delivery",
    "X-Hub-Signature": "X-Hub-Signature",
    "X-Hub-Signature-256": "X-Hub-Signature-256",
    "User-Agent": "User-Agent",
}

DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Fields where an explicitly empty environment value disables the feature
_EMPTY_DISABLES = frozenset({"default_content_type"})


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class RelayConfig:
    """
    Relay configuration.

    Configuration priority (highest to lowest):
    1. Command line arguments
    2. Environment variables (prefixed with RELAY_)
    3. Configuration file (relay.json or relay.yaml)
    4. Default values

    Environment variables:
        RELAY_QUEUE_URL: SQS queue URL or name (falls back to QUEUE_URL)
        RELAY_TARGET_URL: Local URL webhooks are replayed to (falls back to LOCAL_URL)
        RELAY_REGION: AWS region (falls back to AWS_REGION / AWS_DEFAULT_REGION)
        RELAY_ENDPOINT_URL: Custom SQS endpoint, e.g. LocalStack
        RELAY_MAX_CONCURRENT: Maximum messages processed at once
        RELAY_MAX_ATTEMPTS: Forward attempts per message
        RELAY_LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR)
    """

    # Queue settings
    queue_url: str = ""
    region: str = "us-east-1"
    endpoint_url: Optional[str] = None
    wait_time_seconds: int = 20
    batch_size: int = 10
    visibility_timeout: int = 60
    visibility_margin: float = 15.0
    poll_error_delay: float = 2.0
    poll_error_max_delay: float = 30.0
    poison_receive_count: int = 5

    # Local target settings
    target_url: str = ""
    request_timeout: float = 20.0
    verify_ssl: bool = True

    # Processing settings
    max_concurrent_messages: int = 10
    max_attempts: int = 3
    backoff_base: float = 1.0
    backoff_max: float = 30.0
    backoff_multiplier: float = 2.0
    drain_timeout: float = 30.0

    # Decoding settings
    encoding_attribute: str = "BodyIsBase64"
    header_attributes: Dict[str, str] = field(
        default_factory=lambda: dict(DEFAULT_HEADER_ATTRIBUTES)
    )
    forward_all_attributes: bool = False
    default_content_type: Optional[str] = "application/json"

    # Logging
    log_level: str = "INFO"
    log_format: str = DEFAULT_LOG_FORMAT

    @classmethod
    def from_file(cls, path: str) -> "RelayConfig":
        """Load configuration from a file."""
        file_path = Path(path)

        if not file_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(file_path, "r") as f:
            if file_path.suffix in [".yaml", ".yml"]:
                import yaml

                data = yaml.safe_load(f) or {}
            else:
                data = json.load(f)

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RelayConfig":
        """Create configuration from a dictionary."""
        if not isinstance(data, dict):
            raise TypeError(f"Expected dict, got {type(data).__name__}")
        return cls(**cls._coerce(data))

    @classmethod
    def _coerce(cls, data: Dict[str, Any]) -> Dict[str, Any]:
        """Type-check known fields; unknown keys are ignored with a warning."""
        # Field name -> expected type(s) for validation
        _FIELD_TYPES: Dict[str, Any] = {
            "queue_url": str,
            "region": str,
            "endpoint_url": str,
            "wait_time_seconds": int,
            "batch_size": int,
            "visibility_timeout": int,
            "visibility_margin": (int, float),
            "poll_error_delay": (int, float),
            "poll_error_max_delay": (int, float),
            "poison_receive_count": int,
            "target_url": str,
            "request_timeout": (int, float),
            "verify_ssl": bool,
            "max_concurrent_messages": int,
            "max_attempts": int,
            "backoff_base": (int, float),
            "backoff_max": (int, float),
            "backoff_multiplier": (int, float),
            "drain_timeout": (int, float),
            "encoding_attribute": str,
            "header_attributes": dict,
            "forward_all_attributes": bool,
            "default_content_type": str,
            "log_level": str,
            "log_format": str,
        }

        values: Dict[str, Any] = {}
        for key, value in data.items():
            expected_type = _FIELD_TYPES.get(key)
            if expected_type is None:
                logger.warning(f"Ignoring unknown config field '{key}'")
                continue
            if value is not None and not isinstance(value, expected_type):
                raise TypeError(
                    f"Config field '{key}' expected {expected_type}, "
                    f"got {type(value).__name__}"
                )
            values[key] = value

        headers = values.get("header_attributes")
        if headers is not None:
            for attr, header in headers.items():
                if not isinstance(attr, str) or not isinstance(header, str):
                    raise TypeError("header_attributes must map strings to strings")
            values["header_attributes"] = dict(headers)

        return values

    @classmethod
    def env_overrides(cls) -> Dict[str, Any]:
        """Collect the fields set through environment variables."""
        # Env var(s) -> field name, with optional converter
        env_mapping = [
            (("RELAY_QUEUE_URL", "QUEUE_URL"), "queue_url", str),
            (("RELAY_TARGET_URL", "LOCAL_URL"), "target_url", str),
            (("RELAY_REGION", "AWS_REGION", "AWS_DEFAULT_REGION"), "region", str),
            (("RELAY_ENDPOINT_URL",), "endpoint_url", str),
            (("RELAY_WAIT_TIME",), "wait_time_seconds", int),
            (("RELAY_BATCH_SIZE",), "batch_size", int),
            (("RELAY_VISIBILITY_TIMEOUT",), "visibility_timeout", int),
            (("RELAY_VISIBILITY_MARGIN",), "visibility_margin", float),
            (("RELAY_POLL_ERROR_DELAY",), "poll_error_delay", float),
            (("RELAY_POLL_ERROR_MAX_DELAY",), "poll_error_max_delay", float),
            (("RELAY_POISON_RECEIVE_COUNT",), "poison_receive_count", int),
            (("RELAY_REQUEST_TIMEOUT",), "request_timeout", float),
            (("RELAY_VERIFY_SSL",), "verify_ssl", _parse_bool),
            (("RELAY_MAX_CONCURRENT",), "max_concurrent_messages", int),
            (("RELAY_MAX_ATTEMPTS",), "max_attempts", int),
            (("RELAY_BACKOFF_BASE",), "backoff_base", float),
            (("RELAY_BACKOFF_MAX",), "backoff_max", float),
            (("RELAY_BACKOFF_MULTIPLIER",), "backoff_multiplier", float),
            (("RELAY_DRAIN_TIMEOUT",), "drain_timeout", float),
            (("RELAY_ENCODING_ATTRIBUTE",), "encoding_attribute", str),
            (("RELAY_FORWARD_ALL_ATTRIBUTES",), "forward_all_attributes", _parse_bool),
            (("RELAY_DEFAULT_CONTENT_TYPE",), "default_content_type", str),
            (("RELAY_LOG_LEVEL",), "log_level", str),
        ]

        overrides: Dict[str, Any] = {}
        for env_vars, field_name, converter in env_mapping:
            for env_var in env_vars:
                value = os.environ.get(env_var)
                if value == "" and field_name in _EMPTY_DISABLES:
                    overrides[field_name] = ""
                    break
                if value:
                    try:
                        overrides[field_name] = converter(value)
                    except ValueError:
                        raise ValueError(f"Invalid value for {env_var}: {value!r}")
                    break
        return overrides

    @classmethod
    def from_env(cls) -> "RelayConfig":
        """Create configuration from environment variables."""
        return cls(**cls.env_overrides())

    @classmethod
    def load(cls, config_path: Optional[str] = None) -> "RelayConfig":
        """
        Load configuration with proper precedence.

        1. Start with defaults
        2. Override with file config (if provided)
        3. Override with environment variables
        """
        config = cls.from_file(config_path) if config_path else cls()
        return config.with_overrides(**cls.env_overrides())

    def with_overrides(self, **changes: Any) -> "RelayConfig":
        """Return a copy with the given non-None fields replaced."""
        changes = {key: value for key, value in changes.items() if value is not None}
        if not changes:
            return self
        return replace(self, **changes)

    def validate(self) -> List[str]:
        """
        Validate configuration.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        if not self.queue_url:
            errors.append("queue_url is required")

        if not self.target_url:
            errors.append("target_url is required")
        else:
            parsed = urlparse(self.target_url)
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                errors.append(f"target_url must be an http(s) URL, got '{self.target_url}'")

        if self.endpoint_url:
            parsed = urlparse(self.endpoint_url)
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                errors.append("endpoint_url must be an http(s) URL")

        if not 1 <= self.batch_size <= MAX_BATCH_SIZE:
            errors.append(f"batch_size must be between 1 and {MAX_BATCH_SIZE}")

        if not 0 <= self.wait_time_seconds <= MAX_WAIT_TIME_SECONDS:
            errors.append(f"wait_time_seconds must be between 0 and {MAX_WAIT_TIME_SECONDS}")

        if not 0 < self.visibility_timeout <= MAX_VISIBILITY_TIMEOUT:
            errors.append(f"visibility_timeout must be between 1 and {MAX_VISIBILITY_TIMEOUT}")

        if self.visibility_margin < 0:
            errors.append("visibility_margin must not be negative")
        elif self.visibility_margin >= self.visibility_timeout:
            errors.append("visibility_margin must be smaller than visibility_timeout")

        if self.max_concurrent_messages < 1:
            errors.append("max_concurrent_messages must be at least 1")

        if self.max_attempts < 1:
            errors.append("max_attempts must be at least 1")

        if self.backoff_base <= 0:
            errors.append("backoff_base must be positive")

        if self.backoff_max < self.backoff_base:
            errors.append("backoff_max must be >= backoff_base")

        if self.backoff_multiplier < 1:
            errors.append("backoff_multiplier must be >= 1")

        if self.request_timeout <= 0:
            errors.append("request_timeout must be positive")

        if self.poll_error_delay <= 0:
            errors.append("poll_error_delay must be positive")

        if self.poll_error_max_delay < self.poll_error_delay:
            errors.append("poll_error_max_delay must be >= poll_error_delay")

        if self.drain_timeout < 0:
            errors.append("drain_timeout must not be negative")

        if not self.encoding_attribute:
            errors.append("encoding_attribute must not be empty")

        return errors

    @property
    def backoff_policy(self) -> BackoffPolicy:
        """Backoff between forward attempts."""
        return BackoffPolicy.create(
            base=self.backoff_base,
            max_delay=self.backoff_max,
            multiplier=self.backoff_multiplier,
            max_attempts=self.max_attempts,
        )

    @property
    def poll_backoff_policy(self) -> BackoffPolicy:
        """Backoff between failed queue polls."""
        return BackoffPolicy.create(
            base=self.poll_error_delay,
            max_delay=self.poll_error_max_delay,
            multiplier=2.0,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return {f.name: getattr(self, f.name) for f in fields(self)}
