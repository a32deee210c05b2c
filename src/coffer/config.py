"""CofferConfig — object store and share-link settings."""

from __future__ import annotations

import os
from dataclasses import dataclass


def _env(*names: str, default: str | None = None) -> str | None:
    for name in names:
        value = os.environ.get(name)
        if value:
            return value
    return default


@dataclass
class CofferConfig:
    """Settings for the object store gateway and share links."""

    bucket: str
    """Bucket that receives new objects."""

    region: str | None = None
    endpoint_url: str | None = None
    """Custom endpoint for S3-compatible stores (MinIO, LocalStack)."""

    access_key_id: str | None = None
    secret_access_key: str | None = None

    base_url: str = "http://localhost:3000"
    """Public base URL used to build share links."""

    share_path: str = "/api/v1/share"

    server_side_encryption: str | None = None
    """SSE mode requested on presigned uploads, e.g. ``"AES256"``."""

    connect_timeout: float = 5.0
    read_timeout: float = 30.0
    max_attempts: int = 3

    def __post_init__(self) -> None:
        if not self.bucket:
            raise ValueError("CofferConfig requires a bucket")
        self.base_url = self.base_url.rstrip("/")
        self.share_path = "/" + self.share_path.strip("/")

    def share_url(self, token: str) -> str:
        return f"{self.base_url}{self.share_path}/{token}"

    @classmethod
    def from_env(cls, **overrides: object) -> CofferConfig:
        """Build a config from ``COFFER_*`` variables, falling back to ``AWS_*``.

        Keyword *overrides* win over the environment.
        """
        port = _env("PORT", default="3000")
        values: dict[str, object] = {
            "bucket": _env("COFFER_BUCKET", "AWS_S3_BUCKET_NAME", default=""),
            "region": _env("COFFER_REGION", "AWS_REGION", "AWS_DEFAULT_REGION"),
            "endpoint_url": _env("COFFER_ENDPOINT_URL", "AWS_ENDPOINT_URL"),
            "access_key_id": _env("COFFER_ACCESS_KEY_ID", "AWS_ACCESS_KEY_ID"),
            "secret_access_key": _env("COFFER_SECRET_ACCESS_KEY", "AWS_SECRET_ACCESS_KEY"),
            "base_url": _env("COFFER_BASE_URL", "BASE_URL", default=f"http://localhost:{port}"),
            "server_side_encryption": _env("COFFER_SSE", "AWS_SSE"),
            "connect_timeout": float(_env("COFFER_CONNECT_TIMEOUT", default="5") or 5),
            "read_timeout": float(_env("COFFER_READ_TIMEOUT", default="30") or 30),
            "max_attempts": int(_env("COFFER_MAX_ATTEMPTS", default="3") or 3),
        }
        values.update(overrides)
        return cls(**values)  # type: ignore[arg-type]
