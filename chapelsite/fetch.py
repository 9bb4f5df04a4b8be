"""
Feed fetching with an on-disk cache.

Each cached URL is stored as two files under the cache directory:

  <sha1>.body   raw response bytes
  <sha1>.json   {"url": ..., "fetched_at": <unix time>}

A cached body younger than the caller's TTL is returned without touching the
network. An older body is refetched; if that fails, the stale copy is served
instead so a flaky feed never empties the site.
"""
import hashlib
import json
import sys
import time
from dataclasses import dataclass
from pathlib import Path

import requests

OK = "ok"
TIMEOUT = "timeout"
HTTP_ERROR = "http"
NETWORK_ERROR = "network"
# fetched fine, but the body failed the caller's validate() check
INVALID = "invalid"

CONNECT_TIMEOUT = 10


@dataclass(frozen=True)
class FetchResult:
    status: str
    url: str
    content: bytes | None = None
    from_cache: bool = False
    stale: bool = False
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == OK


def fetch_url(session: requests.Session, url: str, *, timeout: int) -> FetchResult:
    """
    One blocking GET with an explicit (connect, read) timeout.

    Transport problems come back as a failed FetchResult, never as an
    exception.
    """
    try:
        r = session.get(url, timeout=(min(CONNECT_TIMEOUT, timeout), timeout), allow_redirects=True)
        r.raise_for_status()
    except requests.exceptions.Timeout as e:
        return FetchResult(status=TIMEOUT, url=url, error=str(e))
    except requests.exceptions.HTTPError as e:
        return FetchResult(status=HTTP_ERROR, url=url, error=str(e))
    except requests.exceptions.RequestException as e:
        return FetchResult(status=NETWORK_ERROR, url=url, error=str(e))
    return FetchResult(status=OK, url=url, content=r.content)


class FeedCache:
    """Time-to-live cache of feed payloads, owned by one BuildContext."""

    def __init__(self, cache_dir: Path, session: requests.Session, *, timeout: int = 30, clock=time.time):
        self.cache_dir = Path(cache_dir)
        self.session = session
        self.timeout = timeout
        self.clock = clock
        self._memo: dict[str, FetchResult] = {}

    def reset(self) -> None:
        """Forget payloads fetched earlier in this process."""
        self._memo.clear()

    def _paths(self, url: str) -> tuple[Path, Path]:
        key = hashlib.sha1(url.encode("utf-8")).hexdigest()
        return self.cache_dir / f"{key}.body", self.cache_dir / f"{key}.json"

    def _read(self, url: str) -> tuple[bytes, float] | None:
        body_path, meta_path = self._paths(url)
        if not body_path.exists() or not meta_path.exists():
            return None
        try:
            meta = json.loads(meta_path.read_text(encoding="utf-8"))
            return body_path.read_bytes(), float(meta["fetched_at"])
        except (OSError, ValueError, KeyError, TypeError):
            return None

    def _write(self, url: str, content: bytes) -> None:
        body_path, meta_path = self._paths(url)
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            body_path.write_bytes(content)
            meta_path.write_text(
                json.dumps({"url": url, "fetched_at": self.clock()}, indent=2) + "\n",
                encoding="utf-8",
            )
        except OSError as e:
            print(f"WARNING: could not write feed cache for {url}: {e}", file=sys.stderr)

    def get(self, url: str, *, ttl: float, validate=None) -> FetchResult:
        """
        Return the payload for url, fetching only when the cached copy is
        older than ttl seconds (or absent).

        validate, if given, is called with freshly fetched bytes and should
        raise when they are unusable; such a payload is never written to the
        cache, so a good cached copy survives an error page served with 200.
        """
        if url in self._memo:
            return self._memo[url]

        cached = self._read(url)
        if cached is not None:
            content, fetched_at = cached
            if self.clock() - fetched_at < ttl:
                result = FetchResult(status=OK, url=url, content=content, from_cache=True)
                self._memo[url] = result
                return result

        result = fetch_url(self.session, url, timeout=self.timeout)
        if result.ok and validate is not None:
            try:
                validate(result.content)
            except Exception as e:
                # validators are feed parsers, which raise many exception types
                result = FetchResult(status=INVALID, url=url, error=str(e))
        if result.ok:
            self._write(url, result.content)
        elif cached is not None:
            print(
                f"WARNING: fetch failed for {url} ({result.status}: {result.error}); serving stale cache",
                file=sys.stderr,
            )
            result = FetchResult(
                status=OK,
                url=url,
                content=cached[0],
                from_cache=True,
                stale=True,
                error=result.error,
            )
        self._memo[url] = result
        return result
