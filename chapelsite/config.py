import re
from pathlib import Path

import yaml  # pip install pyyaml

from . import __version__

DEFAULT_CONFIG_NAME = "config.yml"

# "1d", "12h", "30m", ... or "*" for never expires
DURATION_RE = re.compile(r"^\s*(\d+)\s*([smhdwy])\s*$")

DURATION_UNITS = {
    "s": 1,
    "m": 60,
    "h": 60 * 60,
    "d": 24 * 60 * 60,
    "w": 7 * 24 * 60 * 60,
    "y": 365 * 24 * 60 * 60,
}


class ConfigError(ValueError):
    """Raised when the config file cannot be read or has the wrong shape."""


def parse_cache_duration(value) -> float:
    """
    Convert a cache duration like "1d" or "30m" into seconds.

    "*" means the cached copy never expires (returns infinity).
    Plain numbers are taken as seconds.
    """
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    text = str(value or "").strip().lower()
    if text == "*":
        return float("inf")
    m = DURATION_RE.match(text)
    if not m:
        raise ConfigError(f"Invalid cache duration: {value!r}")
    return float(int(m.group(1)) * DURATION_UNITS[m.group(2)])


def _as_list(value, key: str) -> list:
    # a single string is accepted where a list is expected
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        return value
    raise ConfigError(f"Config key {key!r} must be a string or a list")


def _as_int(value, key: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Config key {key!r} must be an integer, got {value!r}") from None


def load_config(config_path: Path | None = None, *, base_dir: Path | None = None) -> dict:
    """
    Load the YAML config and apply defaults.

    When config_path is None, "config.yml" in base_dir (default: current
    directory) is used if present; a missing default file just means
    "all defaults". An explicitly named file must exist.

    Relative directories in the result are resolved against the directory
    holding the config file.
    """
    if config_path is None:
        root = Path(base_dir or Path.cwd())
        candidate = root / DEFAULT_CONFIG_NAME
        data = _read_yaml(candidate) if candidate.exists() else {}
    else:
        candidate = Path(config_path)
        if not candidate.exists():
            raise ConfigError(f"Config file not found: {candidate}")
        root = candidate.resolve().parent
        data = _read_yaml(candidate)

    widths = sorted({_as_int(w, "image_widths") for w in _as_list(data.get("image_widths", [400, 800, 1200, 1600]), "image_widths")})
    if not widths or widths[0] <= 0:
        raise ConfigError("Config key 'image_widths' must list positive widths")

    cfg = {
        # Sermon feed
        "sermon_feed_url": data.get("sermon_feed_url", "https://feed.sermonaudio.com/broadcasters/lfc"),
        "sermon_cache_duration": parse_cache_duration(data.get("sermon_cache_duration", "1d")),
        # Calendar feed; empty URL disables the calendar
        "calendar_ics_url": data.get("calendar_ics_url") or "",
        "calendar_cache_duration": parse_cache_duration(data.get("calendar_cache_duration", "1h")),
        "timezone": data.get("timezone", "America/Detroit"),
        "calendar_lookahead_days": _as_int(data.get("calendar_lookahead_days", 7), "calendar_lookahead_days"),
        "calendar_max_events": _as_int(data.get("calendar_max_events", 7), "calendar_max_events"),
        # HTTP
        "fetch_timeout": _as_int(data.get("fetch_timeout", 30), "fetch_timeout"),
        "user_agent": data.get("user_agent", f"chapelsite/{__version__}"),
        # Directories
        "cache_dir": (root / data.get("cache_dir", ".cache")).resolve(),
        "data_dir": (root / data.get("data_dir", "_data")).resolve(),
        "site_dir": (root / data.get("site_dir", "_site")).resolve(),
        "source_dir": (root / data.get("source_dir", "src")).resolve(),
        # Images
        "image_widths": widths,
        "image_formats": [str(f).lower() for f in _as_list(data.get("image_formats", ["avif", "webp"]), "image_formats")],
        "image_output_dir": data.get("image_output_dir", "assets/images/optimized"),
        "image_url_path": data.get("image_url_path", "/assets/images/optimized/"),
        "image_skip_patterns": [str(p) for p in _as_list(data.get("image_skip_patterns", ["favicon", "logo", "icon"]), "image_skip_patterns")],
        "image_min_dimension": _as_int(data.get("image_min_dimension", 100), "image_min_dimension"),
    }
    return cfg


def _read_yaml(path: Path) -> dict:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Could not read config {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config {path} must be a mapping at the top level")
    return data
