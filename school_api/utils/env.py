"""Utilities for locating the environment file."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Iterator

PROJECT_ROOT = Path(__file__).resolve().parents[2]


def _iter_env_files() -> Iterator[Path]:
    """Yield probable `.env` files ordered by proximity to the project."""

    seen: set[Path] = set()

    def walk(start: Path) -> Iterator[Path]:
        cursor = start if start.is_dir() else start.parent

        while True:
            env_path = cursor / ".env"
            if env_path not in seen:
                seen.add(env_path)
                if env_path.exists():
                    yield env_path

            if cursor.parent == cursor:
                break
            cursor = cursor.parent

    yield from walk(Path.cwd())
    yield from walk(PROJECT_ROOT)


def resolve_env_path() -> Path:
    """Return the `.env` file to load.

    ``ENV_PATH`` wins when set, even if the file does not exist yet, so that
    deployments and tests can point at an explicit location. Otherwise the
    nearest `.env` above the working directory or the project root is used,
    falling back to ``<project>/.env``.
    """

    explicit = os.getenv("ENV_PATH")
    if explicit:
        return Path(explicit).expanduser()

    for candidate in _iter_env_files():
        return candidate

    return PROJECT_ROOT / ".env"


__all__ = ["PROJECT_ROOT", "resolve_env_path"]
