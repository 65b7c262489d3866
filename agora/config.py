"""
agora.config — YAML Configuration Loader
=========================================

Reads ``config.yaml`` for **infrastructure-only** settings (community
identity, API port, storage URLs, display limits).  Secrets such as
``DATABASE_URL`` and ``JWT_SECRET`` live in the environment (``.env``).

Usage::

    from agora.config import load_config

    cfg = load_config()          # reads ./config.yaml by default
    print(cfg.community_name)    # "Agora Dev"
    print(cfg.reply_window)      # 5
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml


@dataclass(frozen=True, slots=True)
class AgoraConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    community_name: str

    # API
    api_port: int

    # Object storage — public base URL that uploaded paths are appended to
    storage_public_url: str

    # Display / limits
    reply_window: int = 5
    max_upload_mb: int = 25
    search_limit: int = 10

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_mb * 1024 * 1024


def load_config(path: str | Path = "config.yaml") -> AgoraConfig:
    """Read *path* and return an :class:`AgoraConfig` instance.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    return AgoraConfig(
        community_name=raw["community_name"],
        api_port=int(raw["api_port"]),
        storage_public_url=str(raw["storage_public_url"]).rstrip("/"),
        reply_window=int(raw.get("reply_window", 5)),
        max_upload_mb=int(raw.get("max_upload_mb", 25)),
        search_limit=int(raw.get("search_limit", 10)),
    )
