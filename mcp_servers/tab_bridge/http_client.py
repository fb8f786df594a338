from __future__ import annotations

import ssl
import urllib.parse
from urllib.error import HTTPError, URLError
from urllib.request import HTTPRedirectHandler, HTTPSHandler, Request, build_opener

from .config import BridgeConfig


class HttpClientError(Exception):
    pass


class _SafeRedirectHandler(HTTPRedirectHandler):
    def __init__(self, config: BridgeConfig) -> None:
        super().__init__()
        self._config = config

    def redirect_request(self, req, fp, code, msg, headers, newurl):  # noqa: ANN001
        # urllib may pass relative URLs here; normalize against the previous URL.
        absolute = urllib.parse.urljoin(req.full_url, str(newurl))
        parsed = urllib.parse.urlparse(absolute)
        if parsed.scheme not in ("http", "https"):
            raise HttpClientError("Only http/https are supported (redirect)")
        if not self._config.is_host_allowed(parsed.hostname or ""):
            raise HttpClientError(f"Host {parsed.hostname} is not in allowlist (redirect)")
        return super().redirect_request(req, fp, code, msg, headers, absolute)


def http_get(url: str, config: BridgeConfig) -> dict[str, object]:
    """Fetch a document for page navigation.

    Returns status, headers, the decoded body, the final URL after redirects and whether
    the body was cut at ``config.http_max_bytes``.
    """
    parsed = urllib.parse.urlparse(url)
    if parsed.scheme not in ("http", "https"):
        raise HttpClientError("Only http/https are supported")
    if not config.is_host_allowed(parsed.hostname or ""):
        raise HttpClientError(f"Host {parsed.hostname} is not in allowlist")
    req = Request(url, headers={"User-Agent": "tab-bridge/1.0", "Accept": "text/html,*/*;q=0.8"})
    try:
        ctx = ssl.create_default_context()
        opener = build_opener(_SafeRedirectHandler(config), HTTPSHandler(context=ctx))
        with opener.open(req, timeout=config.http_timeout) as resp:
            body = resp.read(config.http_max_bytes + 1)
            truncated = len(body) > config.http_max_bytes
            if truncated:
                body = body[: config.http_max_bytes]
            charset = resp.headers.get_content_charset() or "utf-8"
            return {
                "status": resp.status,
                "headers": dict(resp.headers),
                "body": body.decode(charset, errors="replace"),
                "url": resp.geturl() or url,
                "truncated": truncated,
            }
    except HTTPError as exc:
        raise HttpClientError(f"HTTP {exc.code} for {url}") from exc
    except (TimeoutError, URLError) as exc:
        raise HttpClientError(str(exc)) from exc
