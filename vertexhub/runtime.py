"""
Discovery of the external programs vertexhub drives.

Rules
-----
* Detection via the filesystem and :func:`shutil.which` only - no shell.
* Callers decide whether a missing program is fatal.
"""

import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path

from .config import Config
from .exceptions import MissingDependencyError

logger = logging.getLogger(__name__)

CLAUDE_INSTALL_HINT = (
    "Install Claude Code first:\n"
    "  npm install -g @anthropic-ai/claude-code\n"
    "  or: curl -fsSL https://claude.ai/install.sh | sh"
)


@dataclass(frozen=True)
class ProxyInstall:
    """What exists of the Antigravity proxy checkout."""

    directory: Path
    dir_exists: bool
    entry_exists: bool
    accounts_exists: bool

    @property
    def complete(self) -> bool:
        return self.dir_exists and self.entry_exists and self.accounts_exists


def _version_key(name: str) -> tuple:
    parts = []
    for piece in name.lstrip("v").split("."):
        parts.append(int(piece) if piece.isdigit() else 0)
    return tuple(parts)


def find_nvm_node(home: Path, nvm_dir: str | None = None) -> str | None:
    """Resolve the node binary of nvm's default alias, without sourcing nvm.sh."""
    root = Path(nvm_dir) if nvm_dir else home / ".nvm"
    try:
        alias = (root / "alias" / "default").read_text(encoding="utf-8").strip()
    except OSError:
        return None
    if not alias:
        return None

    version = alias if alias.startswith("v") else f"v{alias}"
    versions_dir = root / "versions" / "node"
    if not versions_dir.is_dir():
        return None

    # "v20" matches v20.11.1 but not v200.0.0
    matches = [
        d.name
        for d in versions_dir.iterdir()
        if d.name == version or d.name.startswith(f"{version}.")
    ]
    for name in sorted(matches, key=_version_key, reverse=True):
        node = versions_dir / name / "bin" / "node"
        if node.exists():
            return str(node)
    return None


def find_node_bin(home: Path | None = None) -> str | None:
    """Locate Node.js: PATH first, then nvm's default alias."""
    found = shutil.which("node")
    if found:
        return found
    node = find_nvm_node(home or Path.home(), os.environ.get("NVM_DIR"))
    if node:
        logger.debug(f"Using nvm node at {node}")
    return node


def find_claude_bin() -> str | None:
    return shutil.which("claude")


def check_proxy_install(config: Config) -> ProxyInstall:
    return ProxyInstall(
        directory=config.proxy_dir,
        dir_exists=config.proxy_dir.is_dir(),
        entry_exists=config.proxy_entry.is_file(),
        accounts_exists=config.accounts_script.is_file(),
    )


def require_proxy_install(config: Config) -> ProxyInstall:
    """Return the proxy install or raise MissingDependencyError with remediation."""
    install = check_proxy_install(config)
    if not install.dir_exists:
        raise MissingDependencyError(
            f"Antigravity proxy not found at {config.proxy_dir}",
            hint="Clone the proxy there, or set VERTEXHUB_PROXY_DIR to its location.",
        )
    if not install.entry_exists:
        raise MissingDependencyError(
            f"Proxy entry point missing: {config.proxy_entry}",
            hint="Check that VERTEXHUB_PROXY_DIR points at a complete proxy checkout.",
        )
    if not install.accounts_exists:
        raise MissingDependencyError(
            f"Accounts script missing: {config.accounts_script}",
            hint="Update the proxy checkout; src/cli/accounts.js is required.",
        )
    return install


def require_node(home: Path | None = None) -> str:
    node = find_node_bin(home)
    if not node:
        raise MissingDependencyError(
            "Node.js not found.",
            hint="Install Node.js 18+ first (or set an nvm default alias).",
        )
    return node
