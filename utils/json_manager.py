"""Helpers for reading the optional JSON configuration file."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Union

PathLike = Union[str, "Path"]


def load_json(path: PathLike) -> Dict[str, Any]:
    """Load JSON and always return a dict, even for missing, empty or malformed files."""
    target = Path(path)
    if not target.exists():
        return {}
    try:
        content = target.read_text(encoding="utf-8").strip()
        if not content:
            return {}
        data = json.loads(content)
    except (OSError, json.JSONDecodeError) as exc:
        print(f"⚠️ Could not read {target} ({exc}), using defaults.")
        return {}
    if not isinstance(data, dict):
        print(f"⚠️ {target} does not contain a JSON object, using defaults.")
        return {}
    return data
