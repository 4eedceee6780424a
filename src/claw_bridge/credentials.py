from __future__ import annotations

import json
import logging
import shutil
from pathlib import Path
from typing import Any

logger = logging.getLogger("claw_bridge.credentials")


class CredentialStore:
    """Saved protocol credentials, kept as ``creds.json`` in the auth directory."""

    def __init__(self, auth_dir: Path):
        self.auth_dir = Path(auth_dir)

    @property
    def creds_path(self) -> Path:
        return self.auth_dir / "creds.json"

    def exists(self) -> bool:
        return self.creds_path.exists()

    def load(self) -> dict[str, Any] | None:
        if not self.exists():
            return None
        try:
            data = json.loads(self.creds_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable credentials at %s: %s", self.creds_path, exc)
            return None
        return data if isinstance(data, dict) else None

    def save(self, blob: dict[str, Any]) -> None:
        self.auth_dir.mkdir(parents=True, exist_ok=True)
        tmp_path = self.creds_path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(blob), encoding="utf-8")
        tmp_path.replace(self.creds_path)

    def clear(self) -> None:
        if self.auth_dir.exists():
            shutil.rmtree(self.auth_dir)
        self.auth_dir.mkdir(parents=True, exist_ok=True)
        logger.info("Auth state cleared (%s)", self.auth_dir)
