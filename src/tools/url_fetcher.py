"""URLFetcher tool - fetch a web page and extract its text."""

import re
from typing import Any
from urllib.parse import urlparse

from tools.base import RESTTool

USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"
MAX_CONTENT_LENGTH = 2000

TITLE_RE = re.compile(r"<title[^>]*>([^<]+)</title>", re.IGNORECASE)
SCRIPT_RE = re.compile(r"<script[^>]*>[\s\S]*?</script>", re.IGNORECASE)
STYLE_RE = re.compile(r"<style[^>]*>[\s\S]*?</style>", re.IGNORECASE)
TAG_RE = re.compile(r"<[^>]+>")
SPACE_RE = re.compile(r"\s+")


def is_valid_url(url: Any) -> bool:
    if not isinstance(url, str):
        return False
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def extract_title(html: str) -> str:
    match = TITLE_RE.search(html)
    return match.group(1).strip() if match else "No title"


def extract_content(html: str) -> str:
    """Strip scripts, styles and tags; collapse whitespace."""
    text = SCRIPT_RE.sub("", html)
    text = STYLE_RE.sub("", text)
    text = TAG_RE.sub(" ", text)
    text = SPACE_RE.sub(" ", text).strip()
    return text or "Unable to extract content"


class URLFetcherTool(RESTTool):
    """Fetch the content of a web page."""

    name = "URLFetcher"
    description = "Fetch the content of a web page"
    input_schema = {
        "type": "object",
        "properties": {
            "url": {
                "type": "string",
                "description": "URL of the page to fetch"
            }
        },
        "required": ["url"]
    }

    async def execute(self, input: dict[str, Any]) -> dict[str, Any]:
        url = input["url"]
        if not is_valid_url(url):
            raise ValueError(f"Invalid URL: {url}")

        response = await self._request("GET", url, headers={"User-Agent": USER_AGENT})
        html = response.text

        return {
            "success": True,
            "url": url,
            "title": extract_title(html),
            "content": extract_content(html)[:MAX_CONTENT_LENGTH],
            "status": response.status_code,
            "contentType": response.headers.get("content-type")
        }
