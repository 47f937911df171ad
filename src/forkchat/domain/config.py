"""Typed runtime profile model used at profile I/O boundaries."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from ..timeouts import DEFAULT_PROFILE_TIMEOUT_SEC, normalize_timeout

DEFAULT_API_KEY_ENV = "OPENAI_API_KEY"
DEFAULT_TEMPLATE_ID = "default"

_KNOWN_PROFILE_KEYS = {
    "default_model",
    "base_url",
    "api_key_env",
    "timeout",
    "state_file",
    "log_file",
    "default_template_id",
    "stream",
}


def _optional_str_field(profile: Mapping[str, Any], key: str) -> str | None:
    value = profile.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"'{key}' must be a string")
    return value


@dataclass(slots=True)
class RuntimeProfile:
    """Typed runtime profile consumed by the service and provider layers."""

    default_model: str
    timeout: int | float = DEFAULT_PROFILE_TIMEOUT_SEC
    base_url: str | None = None
    api_key_env: str = DEFAULT_API_KEY_ENV
    state_file: str | None = None
    log_file: str | None = None
    default_template_id: str = DEFAULT_TEMPLATE_ID
    stream: bool = True
    extras: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, profile: Mapping[str, Any]) -> RuntimeProfile:
        """Create typed runtime profile from raw mapped profile data."""
        if not isinstance(profile, Mapping):
            raise ValueError("Profile must be a dictionary-like mapping")

        default_model = profile.get("default_model")
        if not isinstance(default_model, str) or not default_model.strip():
            raise ValueError("Profile missing required field: default_model")

        timeout = normalize_timeout(profile.get("timeout", DEFAULT_PROFILE_TIMEOUT_SEC))

        stream = profile.get("stream", True)
        if not isinstance(stream, bool):
            raise ValueError("'stream' must be a boolean")

        extras = {
            str(key): value
            for key, value in profile.items()
            if key not in _KNOWN_PROFILE_KEYS
        }

        return cls(
            default_model=default_model.strip(),
            timeout=timeout,
            base_url=_optional_str_field(profile, "base_url"),
            api_key_env=_optional_str_field(profile, "api_key_env") or DEFAULT_API_KEY_ENV,
            state_file=_optional_str_field(profile, "state_file"),
            log_file=_optional_str_field(profile, "log_file"),
            default_template_id=(
                _optional_str_field(profile, "default_template_id") or DEFAULT_TEMPLATE_ID
            ),
            stream=stream,
            extras=extras,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize runtime profile to standard dict shape."""
        profile: dict[str, Any] = {
            "default_model": self.default_model,
            "timeout": self.timeout,
            "api_key_env": self.api_key_env,
            "default_template_id": self.default_template_id,
            "stream": self.stream,
        }
        if self.base_url is not None:
            profile["base_url"] = self.base_url
        if self.state_file is not None:
            profile["state_file"] = self.state_file
        if self.log_file is not None:
            profile["log_file"] = self.log_file

        profile.update(self.extras)
        return profile


def load_profile(path: str | Path) -> RuntimeProfile:
    """Load and validate a JSON profile file."""
    profile_path = Path(path).expanduser()
    try:
        with open(profile_path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in profile file: {e}") from e
    return RuntimeProfile.from_dict(raw)
