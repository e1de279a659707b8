"""Shared HTTP helpers for the fetch strategies.

All network access goes through `get_text` / `get_json` so every strategy
gets the same User-Agent, per-request timeout and SSL fallback.
"""

import json
import logging
import ssl
from typing import Any

import aiohttp
import certifi

logger = logging.getLogger(__name__)

# Browser-like User-Agent to avoid being blocked by some servers
USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)

# Reddit's JSON API rejects browser UAs without cookies; it wants a bot UA
BOT_USER_AGENT = "SEOIntelBot/1.0 (agency research digest)"


def create_ssl_context(verify: bool = True) -> ssl.SSLContext:
    """Create SSL context with optional certificate verification.

    Args:
        verify: If True, verify SSL certificates using certifi bundle.
                If False, disable verification (for problematic servers).

    Returns:
        Configured SSL context
    """
    if verify:
        return ssl.create_default_context(cafile=certifi.where())
    ctx = ssl.create_default_context()
    ctx.check_hostname = False
    ctx.verify_mode = ssl.CERT_NONE
    return ctx


async def get_text(
    session: aiohttp.ClientSession,
    url: str,
    timeout: int,
    params: dict[str, Any] | None = None,
    user_agent: str = USER_AGENT,
    verify_ssl: bool = True,
) -> str | None:
    """GET a URL and return the body, or None on a non-2xx response.

    On SSL certificate errors, retries once without verification. Timeouts
    and connection errors propagate; the caller isolates them per source.
    """
    try:
        async with session.get(
            url,
            params=params,
            timeout=aiohttp.ClientTimeout(total=timeout),
            headers={"User-Agent": user_agent},
            ssl=create_ssl_context(verify_ssl),
        ) as resp:
            if not 200 <= resp.status < 300:
                if resp.status >= 500:
                    logger.warning("Fetch %s: server error HTTP %d", url, resp.status)
                else:
                    logger.debug("Fetch %s: HTTP %d", url, resp.status)
                return None
            return await resp.text(errors="replace")
    except aiohttp.ClientSSLError:
        if not verify_ssl:
            raise
        logger.debug("Fetch %s: SSL error, retrying without verification", url)
        return await get_text(session, url, timeout, params, user_agent, verify_ssl=False)


async def get_json(
    session: aiohttp.ClientSession,
    url: str,
    timeout: int,
    params: dict[str, Any] | None = None,
    user_agent: str = USER_AGENT,
) -> Any:
    """GET a URL and decode its JSON body. None on non-2xx."""
    body = await get_text(session, url, timeout, params=params, user_agent=user_agent)
    if body is None:
        return None
    return json.loads(body)
