"""
Filesystem-backed blob storage for local development.

Containers map to directories below ``root``; URLs are ``file://`` URIs.
Signed URLs carry an ``expires`` timestamp but are not cryptographically
signed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path

from ..base import ProviderError


@dataclass(slots=True)
class LocalBlobStorage:
    root: Path = field(default_factory=lambda: Path.cwd() / ".cache" / "listing_autofill" / "blobs")

    def _resolve(self, container: str, path: str) -> Path:
        base = (self.root / container).resolve()
        target = (base / path).resolve()
        if base != target and base not in target.parents:
            raise ProviderError(f"Blob path '{path}' escapes container '{container}'.")
        return target

    def upload_file(self, container: str, path: str, content: bytes | str) -> str:
        target = self._resolve(container, path)
        target.parent.mkdir(parents=True, exist_ok=True)
        data = content.encode("utf-8") if isinstance(content, str) else content
        target.write_bytes(data)
        return target.as_uri()

    def generate_signed_url(self, container: str, path: str, expiry_minutes: int) -> str:
        target = self._resolve(container, path)
        if not target.is_file():
            raise ProviderError(f"Blob '{container}/{path}' does not exist.")
        expires = datetime.now(UTC) + timedelta(minutes=max(1, expiry_minutes))
        return f"{target.as_uri()}?expires={int(expires.timestamp())}"

    def delete_file(self, container: str, path: str) -> None:
        self._resolve(container, path).unlink(missing_ok=True)
