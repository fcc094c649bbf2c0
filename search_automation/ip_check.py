"""
External IP diagnostics: which egress IP / location did the proxy give us?

Operator visibility only. Failures are reported as None, never raised.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import requests
from pydantic import ValidationError

from search_automation.models import IpInfo, ProxyIdentity

logger = logging.getLogger(__name__)

IP_API_URL = "http://ip-api.com/json"


def fetch_ip_info(
    identity: ProxyIdentity,
    *,
    url: str = IP_API_URL,
    timeout_seconds: float = 15,
    session: Optional[requests.Session] = None,
) -> Optional[IpInfo]:
    """GET the what-is-my-IP endpoint through the identity's proxy."""
    http = session or requests
    try:
        resp = http.get(url, proxies=identity.to_requests_proxies(), timeout=timeout_seconds)
    except requests.RequestException as exc:
        logger.debug("IP check request error: %s", exc)
        return None

    if not resp.ok:
        logger.debug("IP check HTTP %s: %s", resp.status_code, (resp.text or "")[:200])
        return None

    try:
        data = resp.json()
    except ValueError:
        logger.debug("IP check invalid JSON: %s", (resp.text or "")[:200])
        return None

    if not isinstance(data, dict):
        return None
    try:
        return IpInfo.model_validate(data)
    except ValidationError:
        logger.debug("IP check unexpected payload: %s", data)
        return None


async def fetch_ip_info_async(identity: ProxyIdentity, **kwargs) -> Optional[IpInfo]:
    """Run fetch_ip_info off the event loop so sibling workers keep running."""
    return await asyncio.to_thread(fetch_ip_info, identity, **kwargs)
