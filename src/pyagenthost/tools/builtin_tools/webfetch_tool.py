from __future__ import annotations

import asyncio
import re
import urllib.error
import urllib.request
from html.parser import HTMLParser
from typing import Any

from ..base import ToolContext, ToolResult, ToolSpec
from ...errors import CancelledByUser


class _HTMLTextExtractor(HTMLParser):
    def __init__(self) -> None:
        super().__init__()
        self._parts: list[str] = []
        self._skip_depth = 0

    def handle_starttag(self, tag: str, attrs):  # type: ignore[override]
        if tag.lower() in {"script", "style", "noscript"}:
            self._skip_depth += 1

    def handle_endtag(self, tag: str):  # type: ignore[override]
        if tag.lower() in {"script", "style", "noscript"} and self._skip_depth > 0:
            self._skip_depth -= 1

    def handle_data(self, data: str):  # type: ignore[override]
        if self._skip_depth > 0:
            return
        text = data.strip()
        if text:
            self._parts.append(text)

    def text(self) -> str:
        joined = "\n".join(self._parts)
        # collapse excessive blank lines
        joined = re.sub(r"\n{3,}", "\n\n", joined)
        return joined.strip()


MAX_BODY_BYTES = 5 * 1024 * 1024


def _fetch(url: str, headers: dict[str, str], timeout: float, max_bytes: int = MAX_BODY_BYTES) -> tuple[bytes, str, bool]:
    """Read at most ``max_bytes`` of the body; the flag says whether more was available."""
    req = urllib.request.Request(url, headers={"User-Agent": "pyagenthost/0.1", **headers})
    with urllib.request.urlopen(req, timeout=timeout) as resp:
        body = resp.read(max_bytes + 1)
        return body[:max_bytes], (resp.headers.get("Content-Type") or "").lower(), len(body) > max_bytes


class WebFetchTool:
    """Fetch a URL and return readable text."""

    spec = ToolSpec(
        name="WebFetch",
        description="Fetch a URL and return its text content (HTML will be converted to plain text).",
        parameters={
            "type": "object",
            "properties": {
                "url": {"type": "string", "description": "The URL to fetch (http or https)."},
                "timeout": {"type": "number", "description": "Timeout seconds (default 15)."},
                "max_chars": {"type": "integer", "description": "Max characters to return (default 12000)."},
                "headers": {"type": "object", "description": "Optional HTTP headers."},
            },
            "required": ["url"],
        },
        kind="readonly",
        signature_key="url",
    )

    async def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        url = str(args.get("url") or "").strip()
        if not re.match(r"^https?://", url, re.I):
            return ToolResult.failure(f"Unsupported URL (http/https only): {url}", type="validation_error")

        timeout = float(args.get("timeout") or 15)
        max_chars = int(args.get("max_chars") or 12000)
        headers = args.get("headers") or {}
        headers = {str(k): str(v) for k, v in headers.items()} if isinstance(headers, dict) else {}

        fetch = asyncio.create_task(asyncio.to_thread(_fetch, url, headers, timeout))
        cancel = asyncio.create_task(ctx.cancel.wait())
        try:
            done, _ = await asyncio.wait({fetch, cancel}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancel.cancel()
        if fetch not in done:
            fetch.cancel()
            raise CancelledByUser(ctx.cancel.reason or "Fetch cancelled")
        try:
            raw, content_type, body_truncated = fetch.result()
        except (urllib.error.URLError, OSError, ValueError) as e:
            return ToolResult.failure(f"WebFetch failed: {e}", url=url)

        text = raw.decode("utf-8", errors="replace")
        if "html" in content_type or "<html" in text[:2000].lower():
            parser = _HTMLTextExtractor()
            parser.feed(text)
            text = parser.text()

        truncated = body_truncated or len(text) > max_chars
        if len(text) > max_chars:
            head = text[: max_chars // 2]
            tail = text[-max_chars // 2 :]
            text = head + "\n\n... (truncated) ...\n\n" + tail

        return ToolResult.ok(text, f"Fetched {url} ({len(raw)} bytes)", url=url, content_type=content_type, truncated=truncated)
