"""Global configuration — XDG paths, env vars, defaults."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path


def _default_config_dir() -> Path:
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "camrelay"
    return Path.home() / ".config" / "camrelay"


@dataclass
class RelayConfig:
    """Application-wide configuration."""

    config_dir: Path = field(default_factory=_default_config_dir)
    profiles_path: Path | None = None
    host: str = "0.0.0.0"
    port: int = 8080
    trace: bool = False
    chunk_size: int = 64 * 1024
    sink_buffer_bytes: int = 8 * 1024 * 1024
    stop_timeout: float = 5.0
    verbose: bool = False

    @classmethod
    def load(cls) -> RelayConfig:
        """Load config from environment variables with XDG defaults."""
        config = cls()

        env_host = os.environ.get("CAMRELAY_HOST")
        if env_host:
            config.host = env_host

        # Plain PORT is the fallback
        env_port = os.environ.get("CAMRELAY_PORT") or os.environ.get("PORT")
        if env_port:
            config.port = int(env_port)

        if os.environ.get("CAMRELAY_TRACE") or os.environ.get("EV_DEBUG"):
            config.trace = True

        env_chunk = os.environ.get("CAMRELAY_CHUNK_SIZE")
        if env_chunk:
            config.chunk_size = int(env_chunk)

        env_buffer = os.environ.get("CAMRELAY_SINK_BUFFER")
        if env_buffer:
            config.sink_buffer_bytes = int(env_buffer)

        env_timeout = os.environ.get("CAMRELAY_STOP_TIMEOUT")
        if env_timeout:
            config.stop_timeout = float(env_timeout)

        env_profiles = os.environ.get("CAMRELAY_PROFILES")
        if env_profiles:
            config.profiles_path = Path(env_profiles)
        else:
            # Pick up the config dir's profiles.yaml if it exists
            candidate = config.config_dir / "profiles.yaml"
            if candidate.is_file():
                config.profiles_path = candidate

        return config
