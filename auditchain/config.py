"""
Configuration module for auditchain.

Centralizes all configuration with environment variable support,
validation, and caching for JSON configuration files.
"""

import json
import os
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

VERSION = "1.0.0"

# ============================================================
# Environment Configuration
# ============================================================

ENV = os.getenv("AUDITCHAIN_ENV", "dev")  # dev|stage|prod

# Storage
DB_PATH = os.getenv("AUDITCHAIN_DB_PATH", "data/auditchain.db")

# Signing configuration
SIGNER_TYPE = os.getenv("AUDITCHAIN_SIGNER", "file")
SIGNING_KEY_PATH = os.getenv("SIGNING_KEY_PATH", "secrets/server_signing_key.json")
AWS_KMS_KEY_ID = os.getenv("AWS_KMS_KEY_ID", "")
AWS_REGION = os.getenv("AWS_REGION", "")
AWS_KMS_PUBLIC_KEY = os.getenv("AWS_KMS_PUBLIC_KEY", "")

# Registration
PUBLISH_NEW_CLIENTS = os.getenv("PUBLISH_NEW_CLIENTS", "false")
REQUEST_TIMEOUT_SECONDS = int(os.getenv("REQUEST_TIMEOUT_SECONDS", "600"))
MAX_ID_ATTEMPTS = int(os.getenv("MAX_ID_ATTEMPTS", "16"))
REGISTER_RPM = int(os.getenv("REGISTER_RPM", "60"))

# Cross-signing
CROSS_SIGN_TARGETS_PATH = os.getenv("CROSS_SIGN_TARGETS_PATH", "config/xsign_targets.json")
CROSS_SIGN_TIMEOUT = float(os.getenv("CROSS_SIGN_TIMEOUT", "5"))

# Ledger mirror (WORM copy of each chain entry)
LEDGER_MIRROR = os.getenv("LEDGER_MIRROR", "none")
S3_BUCKET = os.getenv("S3_BUCKET", "")
S3_PREFIX = os.getenv("S3_PREFIX", "auditchain/chain/")
S3_RETENTION_DAYS = int(os.getenv("S3_RETENTION_DAYS", "365"))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_JSON = os.getenv("LOG_JSON", "true")

# Cache TTL (seconds)
CONFIG_CACHE_TTL = int(os.getenv("CONFIG_CACHE_TTL", "60"))


def parse_bool(value: Any) -> bool:
    """Interpret env-style flag values ("1", "true", "yes", "on")."""
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    """Startup settings handed to the registration handler."""
    version: str = VERSION
    publish_new_clients: bool = False
    request_timeout_seconds: int = 600
    max_id_attempts: int = 16


def load_settings() -> Settings:
    """Build Settings from the process environment."""
    return Settings(
        version=VERSION,
        publish_new_clients=parse_bool(PUBLISH_NEW_CLIENTS),
        request_timeout_seconds=REQUEST_TIMEOUT_SECONDS,
        max_id_attempts=max(1, MAX_ID_ATTEMPTS),
    )


# ============================================================
# Cached Configuration Loaders
# ============================================================

class CachedConfig:
    """
    Thread-safe cached configuration loader.
    Reloads configuration files periodically based on TTL.
    """

    def __init__(self, ttl_seconds: int = 60):
        self._cache: Dict[str, Any] = {}
        self._timestamps: Dict[str, float] = {}
        self._lock = threading.RLock()
        self._ttl = ttl_seconds

    def _is_stale(self, key: str) -> bool:
        if key not in self._timestamps:
            return True
        return (time.time() - self._timestamps[key]) > self._ttl

    def get_json(self, path: str, default: Any = None, force_reload: bool = False) -> Any:
        """
        Load JSON file with caching.
        Returns cached version if within TTL, otherwise reloads.
        A missing file yields ``default`` (and is not cached).
        """
        with self._lock:
            if not force_reload and path in self._cache and not self._is_stale(path):
                return self._cache[path]

            if not Path(path).exists():
                return default

            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)

            self._cache[path] = data
            self._timestamps[path] = time.time()
            return data

    def invalidate(self, path: Optional[str] = None) -> None:
        """Invalidate cache for a specific path or all paths."""
        with self._lock:
            if path:
                self._cache.pop(path, None)
                self._timestamps.pop(path, None)
            else:
                self._cache.clear()
                self._timestamps.clear()


# Global cached config instance
_config_cache = CachedConfig(ttl_seconds=CONFIG_CACHE_TTL)


def load_cross_sign_targets(path: Optional[str] = None) -> list:
    """Load the configured cross-sign peers (empty list if none)."""
    path = path or CROSS_SIGN_TARGETS_PATH
    data = _config_cache.get_json(path, default={})
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected an object with a 'targets' list")
    return list(data.get("targets", []))


def invalidate_config_cache() -> None:
    """Invalidate all cached configuration."""
    _config_cache.invalidate()


# ============================================================
# Validation
# ============================================================

def validate_config() -> Dict[str, bool]:
    """
    Validate that required configuration files exist.
    Returns dict of name -> exists.
    """
    paths = {}
    if SIGNER_TYPE == "file":
        paths["signing_key"] = SIGNING_KEY_PATH
    return {name: Path(path).exists() for name, path in paths.items()}


def is_production() -> bool:
    """Check if running in production mode."""
    return ENV == "prod"
