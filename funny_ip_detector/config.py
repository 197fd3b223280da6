"""
Scan configuration.

Everything the scanner needs is carried in an explicit ScanConfig value.
Nothing is read from process-global flags, so the core can be driven the
same way from the CLI, the HTTP API or a test.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

DEFAULT_BUCKET = "key"
DEFAULT_LOCK_TIMEOUT = 10.0

ENV_PREFIX = "FUNNY_IP_"

_TRUTHY = {"1", "true", "t", "yes", "y", "on"}


class ScanConfig(BaseModel):
    """Options for a single bucket walk."""

    bucket: str = Field(default=DEFAULT_BUCKET, min_length=1)
    limit: int = Field(default=0, ge=0, description="Max records to visit; 0 visits all.")
    decode: bool = Field(default=True, description="Decode stored values as logical records.")
    match_all: bool = Field(default=False, description="Report every address, not only invalid ones.")
    debug: bool = Field(default=False, description="Dump every visited record.")
    lock_timeout: float = Field(
        default=DEFAULT_LOCK_TIMEOUT, ge=0, description="Seconds to wait for the file lock; 0 waits forever."
    )
    reverse: bool = Field(default=True, description="Walk from the last key backwards.")
    data_root: Optional[str] = Field(
        default=None, description="HTTP API only: directory that requested store paths must live under."
    )

    @classmethod
    def from_env(cls, **overrides) -> ScanConfig:
        """Build a config from FUNNY_IP_* environment variables.

        Call ``load_dotenv()`` first if a .env file should be honoured.
        Keyword overrides win over the environment.
        """
        values: dict = {}
        env = os.environ
        if f"{ENV_PREFIX}BUCKET" in env:
            values["bucket"] = env[f"{ENV_PREFIX}BUCKET"]
        if f"{ENV_PREFIX}LIMIT" in env:
            values["limit"] = int(env[f"{ENV_PREFIX}LIMIT"])
        if f"{ENV_PREFIX}LOCK_TIMEOUT" in env:
            values["lock_timeout"] = float(env[f"{ENV_PREFIX}LOCK_TIMEOUT"])
        if env.get(f"{ENV_PREFIX}DATA_ROOT"):
            values["data_root"] = env[f"{ENV_PREFIX}DATA_ROOT"]
        for flag in ("decode", "match_all", "debug"):
            name = f"{ENV_PREFIX}{flag.upper()}"
            if name in env:
                values[flag] = env[name].strip().lower() in _TRUTHY
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


def resolve_db_path(path: str | os.PathLike) -> Path:
    """Map a data directory to its snapshot db; pass db file paths through.

    Anything whose name does not end in "db" is taken to be a data dir, and
    the store lives at ``<dir>/member/snap/db``.
    """
    p = Path(path)
    if str(p).endswith("db"):
        return p
    return p / "member" / "snap" / "db"


def is_under_root(path: str | os.PathLike, root: str | os.PathLike) -> bool:
    """True if ``path`` resolves (symlinks and ``..`` included) inside ``root``."""
    return Path(path).resolve().is_relative_to(Path(root).resolve())
