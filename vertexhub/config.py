"""
Configuration for vertexhub.

Loads settings from environment variables with sensible defaults. A
``.env`` file in ~/.vertexhub/ is honoured but never overrides the real
environment. Invalid values fall back to the defaults.

The proxy checkout defaults to ~/antigravity-proxy rather than a path
relative to this package, since an installed package lives in
site-packages. Set VERTEXHUB_PROXY_DIR to use a checkout elsewhere; the
proxy's entry point and accounts script are always resolved relative to
that directory.
"""

import logging
import os
from dataclasses import dataclass, field
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Mapping

from dotenv import load_dotenv

from .sanitize import validate_port

DEFAULT_PORT = 8090
PROXY_HOST = "127.0.0.1"

load_dotenv(Path(os.environ.get("VERTEXHUB_HOME", Path.home() / ".vertexhub")) / ".env")


def _int_env(environ: Mapping[str, str], name: str, default: int) -> int:
    try:
        return int(environ.get(name, str(default)))
    except ValueError:
        return default


@dataclass
class Config:
    """vertexhub configuration."""

    home: Path
    port: int = DEFAULT_PORT
    host: str = PROXY_HOST

    # Paths
    data_dir: Path = None
    log_file: Path = None
    proxy_dir: Path = None
    claude_config_dir: Path = None
    claude_settings_file: Path = None
    claude_json_file: Path = None

    # Logging
    log_level: str = "WARNING"
    log_max_bytes: int = 10 * 1024 * 1024  # 10MB
    log_backup_count: int = 5

    # Claude Code environment
    auth_token: str = "test"
    model: str = "claude-opus-4-6-thinking"
    sonnet_model: str = "claude-sonnet-4-5-thinking"
    haiku_model: str = "claude-sonnet-4-5"

    # Process management
    startup_attempts: int = 15
    login_attempts: int = 10
    poll_interval: float = 1.0
    probe_timeout: float = 2.0
    status_timeout: float = 3.0
    settle_delay: float = 2.0

    passthrough_env: dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        """Initialize derived paths."""
        if self.data_dir is None:
            self.data_dir = self.home / ".vertexhub"
        if self.log_file is None:
            self.log_file = self.data_dir / "vertexhub.log"
        if self.proxy_dir is None:
            self.proxy_dir = self.home / "antigravity-proxy"
        if self.claude_config_dir is None:
            self.claude_config_dir = self.home / ".claude"
        if self.claude_settings_file is None:
            self.claude_settings_file = self.claude_config_dir / "settings.json"
        if self.claude_json_file is None:
            self.claude_json_file = self.home / ".claude.json"

    @property
    def proxy_url(self) -> str:
        return f"http://{self.host}:{self.port}"

    @property
    def candidate_ports(self) -> list[int]:
        """Ports a proxy may be listening on: the configured one first, then the default."""
        if self.port == DEFAULT_PORT:
            return [self.port]
        return [self.port, DEFAULT_PORT]

    @property
    def proxy_entry(self) -> Path:
        return self.proxy_dir / "src" / "index.js"

    @property
    def accounts_script(self) -> Path:
        return self.proxy_dir / "src" / "cli" / "accounts.js"

    def child_env(self, **extra: str) -> dict[str, str]:
        """Environment for spawned children: the caller's environment plus overrides."""
        env = dict(self.passthrough_env)
        env.update(extra)
        return env

    def claude_env(self) -> dict[str, str]:
        """Values merged into the ``env`` block of Claude Code's settings.json."""
        return {
            "ANTHROPIC_AUTH_TOKEN": self.auth_token,
            "ANTHROPIC_BASE_URL": self.proxy_url,
            "ANTHROPIC_MODEL": self.model,
            "ANTHROPIC_DEFAULT_OPUS_MODEL": self.model,
            "ANTHROPIC_DEFAULT_SONNET_MODEL": self.sonnet_model,
            "ANTHROPIC_DEFAULT_HAIKU_MODEL": self.haiku_model,
            "CLAUDE_CODE_SUBAGENT_MODEL": self.sonnet_model,
        }


def load_config(environ: Mapping[str, str] | None = None, home: Path | None = None) -> Config:
    """Build a Config from an environment mapping (defaults to os.environ)."""
    if environ is None:
        environ = os.environ
    if home is None:
        home = Path.home()

    port = validate_port(environ.get("VERTEXHUB_PORT"))

    data_dir = environ.get("VERTEXHUB_HOME")
    proxy_dir = environ.get("VERTEXHUB_PROXY_DIR")

    return Config(
        home=home,
        port=port if port is not None else DEFAULT_PORT,
        data_dir=Path(data_dir).expanduser() if data_dir else None,
        proxy_dir=Path(proxy_dir).expanduser().resolve() if proxy_dir else None,
        log_level=environ.get("VERTEXHUB_LOG_LEVEL", "WARNING").upper(),
        log_max_bytes=_int_env(environ, "LOG_MAX_BYTES", 10 * 1024 * 1024),
        log_backup_count=_int_env(environ, "LOG_BACKUP_COUNT", 5),
        model=environ.get("VERTEXHUB_MODEL", "claude-opus-4-6-thinking"),
        sonnet_model=environ.get("VERTEXHUB_SONNET_MODEL", "claude-sonnet-4-5-thinking"),
        haiku_model=environ.get("VERTEXHUB_HAIKU_MODEL", "claude-sonnet-4-5"),
        passthrough_env=dict(environ),
    )


def configure_logging(config: Config):
    """Send everything to a rotating log file and warnings (by default) to stderr."""
    log_formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handlers: list[logging.Handler] = []

    try:
        config.data_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            config.log_file,
            maxBytes=config.log_max_bytes,
            backupCount=config.log_backup_count,
        )
        file_handler.setFormatter(log_formatter)
        file_handler.setLevel(logging.DEBUG)
        handlers.append(file_handler)
    except OSError:
        # Read-only home; console logging still works
        pass

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(log_formatter)
    console_level = logging.getLevelName(config.log_level)
    if not isinstance(console_level, int):
        console_level = logging.WARNING
    console_handler.setLevel(console_level)
    handlers.append(console_handler)

    logging.basicConfig(level=logging.DEBUG, handlers=handlers, force=True)
    logging.getLogger("httpcore").setLevel(logging.INFO)
