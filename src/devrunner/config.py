"""devrunner configuration with sensible defaults for local development."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    devrunner configuration.

    All settings can be overridden via environment variables with DEVRUNNER_ prefix.
    Defaults assume esbuild, npm and node are on PATH.
    """

    model_config = SettingsConfigDict(
        env_prefix="DEVRUNNER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    debug: bool = False

    # Toolchain executables
    esbuild_bin: str = "esbuild"
    npm_bin: str = "npm"
    node_bin: str = "node"

    # Bootstrap script each worker process runs (receives worker data on stdin)
    node_runtime_entry: Path | None = None

    # Runtime family handled by the Node.js handler (prefix match)
    runtime_family: str = "nodejs"

    # Runtimes for which aws-sdk is not marked external in cjs output
    sdk_exempt_runtimes: tuple[str, ...] = ("nodejs18.x",)

    # Reuse the previous bundle through its rebuild handle
    incremental_builds: bool = True

    # Grace period between terminate and kill when stopping a worker
    worker_stop_timeout_seconds: float = 5.0

    # Upper bound for `npm install` during deploy packaging
    install_timeout_seconds: float = 600.0


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
