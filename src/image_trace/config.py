"""
Application settings.

Loaded once at startup from environment variables and never mutated:

    IMAGE_TRACE_DATA_DIR               data directory (records, blobs)
    IMAGE_TRACE_SECRET / ENCRYPTION_KEY  server secret for artifact encryption
    IMAGE_TRACE_ENTITLEMENTS           optional YAML file overriding plan entitlements
    IMAGE_TRACE_RETENTION_DAYS         retention of non-premium searches (default 180)
    IMAGE_TRACE_MAX_IMAGE_BYTES        upload / fetch size cap (default 10 MiB)
    IMAGE_TRACE_MAX_IMAGE_PIXELS       decoded width x height cap (default 40M)
    IMAGE_TRACE_MAX_IMAGE_PIXELS       decoded image width x height cap (default 40M)
    IMAGE_TRACE_AVAILABILITY_TTL       seconds provider probes are cached (default 60)
    IMAGE_TRACE_SCANNER_URL            proprietary scanner base URL
    IMAGE_TRACE_SCANNER_API_KEY        optional scanner credential
    GOOGLE_VISION_API_KEY              enables Google Vision
    TINEYE_API_KEY                     enables TinEye
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any

from image_trace.shared.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = os.path.expanduser("~/.image-trace")


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        msg = f"{name} must be an integer, got {raw!r}"
        raise ConfigurationError(msg) from e


@dataclass(frozen=True)
class Settings:
    data_dir: str = DEFAULT_DATA_DIR
    secret: str = ""
    entitlements_file: str | None = None
    retention_days: int = 180
    max_image_bytes: int = 10 * 1024 * 1024
    max_image_pixels: int = 40_000_000
    availability_ttl: int = 60
    scanner_url: str = ""
    scanner_api_key: str | None = None
    google_vision_api_key: str | None = None
    tineye_api_key: str | None = None

    @classmethod
    def from_env(cls) -> Settings:
        secret = os.environ.get("IMAGE_TRACE_SECRET") or os.environ.get("ENCRYPTION_KEY", "")
        if not secret:
            logger.warning("No IMAGE_TRACE_SECRET / ENCRYPTION_KEY set; stored artifacts cannot be encrypted")
        return cls(
            data_dir=os.environ.get("IMAGE_TRACE_DATA_DIR", DEFAULT_DATA_DIR),
            secret=secret,
            entitlements_file=os.environ.get("IMAGE_TRACE_ENTITLEMENTS") or None,
            retention_days=_int_env("IMAGE_TRACE_RETENTION_DAYS", 180),
            max_image_bytes=_int_env("IMAGE_TRACE_MAX_IMAGE_BYTES", 10 * 1024 * 1024),
            max_image_pixels=_int_env("IMAGE_TRACE_MAX_IMAGE_PIXELS", 40_000_000),
            availability_ttl=_int_env("IMAGE_TRACE_AVAILABILITY_TTL", 60),
            scanner_url=os.environ.get("IMAGE_TRACE_SCANNER_URL", ""),
            scanner_api_key=os.environ.get("IMAGE_TRACE_SCANNER_API_KEY") or None,
            google_vision_api_key=os.environ.get("GOOGLE_VISION_API_KEY") or None,
            tineye_api_key=os.environ.get("TINEYE_API_KEY") or None,
        )

    def to_container_config(self) -> dict[str, Any]:
        """Plain dict for ``ApplicationContainer.config.from_dict``."""
        return {
            "data_dir": self.data_dir,
            "secret": self.secret,
            "entitlements_file": self.entitlements_file,
            "retention_days": self.retention_days,
            "max_image_bytes": self.max_image_bytes,
            "max_image_pixels": self.max_image_pixels,
            "availability_ttl": self.availability_ttl,
            "providers": {
                "proprietary": {"scanner_url": self.scanner_url, "api_key": self.scanner_api_key},
                "google_vision": {"api_key": self.google_vision_api_key},
                "tineye": {"api_key": self.tineye_api_key},
            },
        }

    def __repr__(self) -> str:
        return (
            f"Settings(data_dir={self.data_dir!r}, secret={'***' if self.secret else ''!r}, "
            f"entitlements_file={self.entitlements_file!r}, retention_days={self.retention_days}, "
            f"scanner_url={self.scanner_url!r}, google_vision={'on' if self.google_vision_api_key else 'off'}, "
            f"tineye={'on' if self.tineye_api_key else 'off'})"
        )
