"""HTTP requests issued with httpx, turned into Baselines."""

from __future__ import annotations

import hashlib
import re
import time
from typing import Optional, Pattern, Sequence
from urllib.parse import urljoin, urlsplit
from uuid import uuid4

import httpx

from pathspray.core.config import ConfigurationError, RequestConfig, SprayMode
from pathspray.core.logger import get_logger
from pathspray.models.baseline import Baseline
from pathspray.modules.classify.simhash import simhash

logger = get_logger(__name__)


PRESET_EXTRACTORS: dict[str, str] = {
    "url": r"https?://[^\s\"'<>()]+",
    "ip": r"\b(?:(?:25[0-5]|2[0-4]\d|1?\d?\d)\.){3}(?:25[0-5]|2[0-4]\d|1?\d?\d)\b",
    "mail": r"[\w.+-]+@[\w-]+(?:\.[\w-]+)+",
    "js": r"[\w\-/.]+\.js\b",
}

REDIRECT_STATUS = {301, 302, 303, 307, 308}

_TITLE = re.compile(r"<title[^>]*>(.*?)</title>", re.IGNORECASE | re.DOTALL)


class RequestFailed(Exception):
    """Raised when a request fails at the transport level."""

    def __init__(self, url: str, reason: str):
        super().__init__(f"{url}: {reason}")
        self.url = url
        self.reason = reason


def compile_extractors(specs: Sequence[str]) -> dict[str, Pattern[str]]:
    """
    Compile extractor specs.

    Args:
        specs: Preset names ("url", "ip", "mail", "js"), "name:regex"
            pairs, or bare regexes (named after themselves)

    Raises:
        ConfigurationError: If a regex does not compile
    """
    extractors: dict[str, Pattern[str]] = {}
    for spec in specs:
        if spec in PRESET_EXTRACTORS:
            name, pattern = spec, PRESET_EXTRACTORS[spec]
        elif ":" in spec and re.fullmatch(r"\w+", spec.split(":", 1)[0]):
            name, pattern = spec.split(":", 1)
        else:
            name, pattern = spec, spec
        try:
            extractors[name] = re.compile(pattern)
        except re.error as e:
            raise ConfigurationError(f"Invalid extractor {spec!r}: {e}") from e
    return extractors


def extract_title(body: str) -> str:
    """First <title> of an HTML body, whitespace collapsed."""
    match = _TITLE.search(body)
    if not match:
        return ""
    return " ".join(match.group(1).split())[:100]


def join_url(base_url: str, path: str) -> str:
    """Append a candidate to a base URL, with exactly one slash between them."""
    return base_url.rstrip("/") + "/" + path.lstrip("/")


def random_path() -> str:
    """A path that should not exist on any target."""
    return uuid4().hex[:16]


class Requester:
    """
    Issues one GET per candidate and builds the Baseline.

    Redirects are not followed: a redirect to the request URL plus "/" is
    how directories are recognised.
    """

    def __init__(
        self,
        config: Optional[RequestConfig] = None,
        max_connections: int = 100,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize requester.

        Args:
            config: Request configuration
            max_connections: Connection pool size shared by all tasks
            transport: Optional httpx transport (used by tests)
        """
        self.config = config or RequestConfig()
        self.extractors = compile_extractors(self.config.extractors)
        self._max_connections = max_connections
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def start(self) -> None:
        """Open the shared client."""
        if self._client is not None:
            return
        headers = {"User-Agent": self.config.user_agent, **self.config.headers}
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(self.config.timeout),
            verify=self.config.verify_ssl,
            follow_redirects=False,
            headers=headers,
            limits=httpx.Limits(
                max_connections=self._max_connections,
                max_keepalive_connections=self._max_connections,
            ),
            transport=self._transport,
        )

    async def close(self) -> None:
        """Close the shared client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "Requester":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def build_request(self, base_url: str, path: str) -> tuple[str, dict[str, str]]:
        """URL and extra headers for a candidate, depending on spray mode."""
        if self.config.mode == SprayMode.HOST:
            return base_url, {"Host": path}
        return join_url(base_url, path), {}

    async def request(self, base_url: str, path: str) -> Baseline:
        """
        Request one candidate.

        Args:
            base_url: Task base URL
            path: Candidate path (or host name in host mode)

        Returns:
            Baseline of the response

        Raises:
            RequestFailed: On timeouts, connection errors and invalid URLs
        """
        if self._client is None:
            await self.start()
        assert self._client is not None

        url, headers = self.build_request(base_url, path)
        start = time.monotonic()
        try:
            async with self._client.stream("GET", url, headers=headers) as response:
                body = bytearray()
                async for chunk in response.aiter_bytes():
                    body.extend(chunk)
                    if len(body) >= self.config.max_body_size:
                        break
                elapsed = time.monotonic() - start
                return self.to_baseline(
                    response, bytes(body[: self.config.max_body_size]), path, elapsed
                )
        except (httpx.TransportError, httpx.InvalidURL) as e:
            raise RequestFailed(url, type(e).__name__ + (f": {e}" if str(e) else ""))

    def to_baseline(
        self,
        response: httpx.Response,
        raw_body: bytes,
        path: str,
        elapsed: float = 0.0,
    ) -> Baseline:
        """Build a Baseline from a response and the (possibly truncated) body."""
        url = str(response.request.url)
        text = raw_body[: self.config.max_body_size].decode(
            response.encoding or "utf-8", errors="replace"
        )

        length = len(raw_body)
        content_length = response.headers.get("content-length")
        if content_length and content_length.isdigit():
            length = int(content_length)

        redirect_url = ""
        location = response.headers.get("location")
        if location:
            redirect_url = urljoin(url, location)

        is_directory = (
            response.status_code in REDIRECT_STATUS
            and bool(redirect_url)
            and redirect_url.rstrip("/") == url.rstrip("/")
            and redirect_url.endswith("/")
            and not url.endswith("/")
        ) or (200 <= response.status_code < 300 and urlsplit(url).path.endswith("/") and bool(path))

        extracts: dict[str, list[str]] = {}
        for name, pattern in self.extractors.items():
            found = list(dict.fromkeys(m.group(0) for m in pattern.finditer(text)))
            if found:
                extracts[name] = found

        return Baseline(
            url=url,
            path=path,
            host=response.request.headers.get("host", ""),
            status=response.status_code,
            length=length,
            body_signature=hashlib.md5(raw_body).hexdigest(),
            simhash=simhash(text),
            is_directory=is_directory,
            title=extract_title(text),
            content_type=response.headers.get("content-type", "").split(";")[0].strip(),
            redirect_url=redirect_url,
            elapsed=round(elapsed, 3),
            extracts=extracts,
            extra_meta={"server": response.headers.get("server", "")},
            body=text,
        )
