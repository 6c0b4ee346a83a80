"""
Project settings stored in ness.json at the project root.
"""

import json
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

from .errors import ConfigurationError

SETTINGS_FILENAME = "ness.json"

# Machine-local values that should never be committed with the project.
_LOCAL_ONLY = ("profile",)


@dataclass
class NessSettings:
    """Deployment settings for a single site."""
    dir: Optional[str] = None
    domain: Optional[str] = None
    prod: bool = False
    profile: Optional[str] = None
    redirect_www: bool = False
    index_document: str = "index.html"
    error_document: str = "error.html"
    spa: bool = False
    csp: Optional[str] = None

    @property
    def has_custom_domain(self) -> bool:
        return bool(self.domain)

    def require_publish_dir(self) -> str:
        if not self.dir:
            raise ConfigurationError("No publish directory specified")
        return self.dir

    def merge(self, overrides: Dict[str, Any]) -> "NessSettings":
        """Return a copy with every non-None override applied."""
        data = asdict(self)
        data.update({k: v for k, v in overrides.items() if v is not None})
        return NessSettings(**data)

    def to_event_options(self) -> Dict[str, Any]:
        # csp can be huge and is not useful in analytics
        data = asdict(self)
        data.pop("csp", None)
        data.pop("profile", None)
        return data


def _from_json(data: Dict[str, Any]) -> NessSettings:
    # ness.json historically used camelCase keys
    aliases = {
        "redirectWww": "redirect_www",
        "indexDocument": "index_document",
        "errorDocument": "error_document",
    }
    known = {f.name for f in fields(NessSettings)}
    values = {}
    for key, value in data.items():
        key = aliases.get(key, key)
        if key in known:
            values[key] = value
    return NessSettings(**values)


def load_settings(entry: str = ".") -> Optional[NessSettings]:
    """
    Load settings from ness.json.

    Args:
        entry: Project root

    Returns:
        NessSettings, or None when the project has no settings file

    Raises:
        ConfigurationError: If the file exists but is not a JSON object
    """
    settings_file = Path(entry).resolve() / SETTINGS_FILENAME
    if not settings_file.exists():
        return None

    try:
        with open(settings_file, "r") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Could not read {settings_file}: {e}")

    if not isinstance(data, dict):
        raise ConfigurationError(f"{settings_file} must contain a JSON object")

    return _from_json(data)


def save_settings(settings: NessSettings, entry: str = ".") -> Path:
    """
    Persist settings to ness.json, leaving out machine-local keys.

    Returns:
        Path of the written file
    """
    settings_file = Path(entry).resolve() / SETTINGS_FILENAME
    data = {k: v for k, v in asdict(settings).items() if k not in _LOCAL_ONLY and v is not None}

    with open(settings_file, "w") as f:
        json.dump(data, f, indent=2)

    return settings_file
