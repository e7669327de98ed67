"""
Claude Code configuration files.

Writes ~/.claude/settings.json and ~/.claude.json with owner-only
permissions. Existing files are loaded once into a JsonDocument, which
records whether the file was missing, a valid JSON object, or corrupt;
every caller works from its normalised object so a malformed or hostile
file can never poison the merge.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from .config import Config

logger = logging.getLogger(__name__)

SECURE_FILE_MODE = 0o600


class DocumentStatus(Enum):
    MISSING = "missing"
    VALID = "valid"
    CORRUPT = "corrupt"


@dataclass
class JsonDocument:
    """A JSON file as loaded from disk."""

    path: Path
    status: DocumentStatus
    data: dict = field(default_factory=dict)
    reason: str | None = None

    @property
    def is_valid(self) -> bool:
        return self.status == DocumentStatus.VALID

    def as_object(self) -> dict:
        """The document as a plain dict; empty unless it loaded as a valid object."""
        if self.status != DocumentStatus.VALID:
            return {}
        return dict(self.data)


@dataclass
class SettingsResult:
    """What configure_claude_settings changed."""

    settings_file: Path
    onboarding_file: Path
    onboarding_updated: bool
    recovered_corrupt: bool


def write_secure(path: Path, content: str):
    """
    Write content to path readable and writable by the owner only.

    The file is created with mode 0600; an existing file is re-chmodded
    after writing. Filesystems that cannot store permission bits only
    produce a warning.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, SECURE_FILE_MODE)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(content)

    try:
        os.chmod(path, SECURE_FILE_MODE)
    except OSError as e:
        logger.warning(f"Could not restrict permissions on {path}: {e}")


def _decode_object(text: str) -> dict:
    """Decode text as a JSON object. Raises ValueError with the reason otherwise."""
    try:
        value = json.loads(text)
    except (TypeError, ValueError, RecursionError) as e:
        raise ValueError(f"unparsable JSON: {e}") from e
    if not isinstance(value, dict):
        raise ValueError(f"expected a JSON object, found {type(value).__name__}")
    return value


def merge_json_object(text: str | None) -> dict:
    """Parse text as a JSON object; anything else (null, arrays, scalars, garbage) becomes {}."""
    if not text:
        return {}
    try:
        return _decode_object(text)
    except ValueError:
        return {}


def load_json_document(path: Path) -> JsonDocument:
    """Load a JSON file, classifying it as missing, valid or corrupt."""
    path = Path(path)
    if not path.exists():
        return JsonDocument(path=path, status=DocumentStatus.MISSING)

    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.warning(f"Could not read {path}: {e}")
        return JsonDocument(path=path, status=DocumentStatus.CORRUPT, reason=str(e))

    try:
        value = _decode_object(text)
    except ValueError as e:
        logger.warning(f"Ignoring {path}: {e}")
        return JsonDocument(path=path, status=DocumentStatus.CORRUPT, reason=str(e))

    return JsonDocument(path=path, status=DocumentStatus.VALID, data=value)


def write_json(path: Path, data: dict):
    write_secure(path, json.dumps(data, indent=2) + "\n")


def merge_env(path: Path, values: dict[str, str]) -> JsonDocument:
    """
    Merge values into the ``env`` object of a settings file.

    Existing ``env`` keys not in values are kept, as is every other
    top-level key. Returns the document as it was before the write.
    """
    document = load_json_document(path)
    settings = document.as_object()

    env = settings.get("env")
    if not isinstance(env, dict):
        env = {}
    settings["env"] = {**env, **values}

    write_json(path, settings)
    return document


def ensure_onboarding_flag(path: Path) -> bool:
    """Set ``hasCompletedOnboarding`` unless it is already set. Returns True if the file changed."""
    state = load_json_document(path).as_object()
    if state.get("hasCompletedOnboarding"):
        return False
    state["hasCompletedOnboarding"] = True
    write_json(path, state)
    return True


def configure_claude_settings(config: Config) -> SettingsResult:
    """Point Claude Code at the proxy and skip its first-run onboarding."""
    previous = merge_env(config.claude_settings_file, config.claude_env())
    logger.info(f"Wrote Claude Code settings to {config.claude_settings_file}")

    onboarding_updated = ensure_onboarding_flag(config.claude_json_file)
    if onboarding_updated:
        logger.info(f"Set hasCompletedOnboarding in {config.claude_json_file}")

    return SettingsResult(
        settings_file=config.claude_settings_file,
        onboarding_file=config.claude_json_file,
        onboarding_updated=onboarding_updated,
        recovered_corrupt=previous.status == DocumentStatus.CORRUPT,
    )


def read_claude_settings(config: Config) -> JsonDocument:
    return load_json_document(config.claude_settings_file)
