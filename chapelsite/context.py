"""
Per-build state.

Everything that used to live in process-wide caches hangs off a BuildContext
instead; a build creates one (or calls reset() on an existing one) before
ingesting anything.
"""
from datetime import datetime, timezone
from pathlib import Path

import requests

from .config import load_config
from .fetch import FeedCache


class BuildContext:
    def __init__(self, cfg: dict, *, now: datetime | None = None, session: requests.Session | None = None, quiet: bool = False):
        self.cfg = cfg
        self.quiet = quiet
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": cfg["user_agent"]})
        self.feed_cache = FeedCache(cfg["cache_dir"], self.session, timeout=cfg["fetch_timeout"])
        self._fixed_now = now
        self.now = now or datetime.now(timezone.utc)

    @classmethod
    def from_config_file(cls, config_path: Path | None = None, **kwargs) -> "BuildContext":
        return cls(load_config(config_path), **kwargs)

    def reset(self) -> None:
        """Start a fresh build: drop in-memory feed payloads and restamp now."""
        self.feed_cache.reset()
        self.now = self._fixed_now or datetime.now(timezone.utc)

    def log(self, msg: str) -> None:
        if not self.quiet:
            print(msg)
