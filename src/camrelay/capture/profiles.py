"""Load capture profiles from YAML, layered over the built-in defaults."""

from __future__ import annotations

import dataclasses
from pathlib import Path

import yaml

from camrelay.capture.models import DEFAULT_PROFILES, CaptureKind, CaptureProfile

_INT_FIELDS = ("width", "height", "rotation", "capture_ms", "framerate", "bitrate")


def load_profiles(path: str | Path | None = None) -> dict[CaptureKind, CaptureProfile]:
    """Return the profile for every capture kind, applying ``path`` if given."""
    if path is None:
        return dict(DEFAULT_PROFILES)
    text = Path(path).read_text(encoding="utf-8")
    return load_profiles_from_string(text)


def load_profiles_from_string(text: str) -> dict[CaptureKind, CaptureProfile]:
    """Parse a YAML mapping of ``kind -> overrides``."""
    data = yaml.safe_load(text) or {}
    if not isinstance(data, dict):
        raise ValueError("Profiles YAML must be a mapping")

    profiles = dict(DEFAULT_PROFILES)
    for key, overrides in data.items():
        try:
            kind = CaptureKind(key)
        except ValueError:
            raise ValueError(f"Unknown capture kind: {key!r}") from None
        if overrides is None:
            continue
        if not isinstance(overrides, dict):
            raise ValueError(f"Profile '{key}' must be a mapping")
        profiles[kind] = _apply_overrides(profiles[kind], overrides)
    return profiles


def _apply_overrides(base: CaptureProfile, overrides: dict) -> CaptureProfile:
    known = {f.name for f in dataclasses.fields(CaptureProfile)} - {"kind"}
    unknown = set(overrides) - known
    if unknown:
        raise ValueError(f"Unknown profile fields: {', '.join(sorted(unknown))}")

    changes: dict = {}
    for name, value in overrides.items():
        if name in _INT_FIELDS and value is not None:
            value = int(value)
        elif name == "inline_headers":
            value = bool(value)
        elif name == "extra_args":
            if isinstance(value, str):
                value = value.split()
            value = tuple(str(a) for a in value)
        elif name in ("executable", "media_type"):
            value = str(value)
        changes[name] = value
    return dataclasses.replace(base, **changes)
