"""
Proxy identity builder for Playwright with session affinity ("sticky sessions").

Primary goal: give every worker one proxy identity for its whole lifetime. In
sticky mode the upstream provider keeps the same egress IP for all requests
carrying the same session token, so the token is embedded into the username
and is unique per worker instantiation (worker id + wall clock). In rotating
mode the token is omitted and the provider picks an IP per connection.
"""

from __future__ import annotations

import logging
import re
import time
from typing import Callable, Optional

from search_automation.models import ProxyIdentity, ProxyMode

logger = logging.getLogger(__name__)

PROXY_TYPE = "residential"

# A `-name-` directive whose value rendered empty (followed by a separator or the end).
_EMPTY_DIRECTIVE = re.compile(r"[-_][A-Za-z]+[-_](?=[-_]|$)")


def _session_token(worker_id: int, now: float) -> str:
    return f"worker{worker_id}_{int(now * 1000)}"


class ProxyIdentityBuilder:
    """
    Composes provider-routing usernames.

    Notes:
    - Playwright proxy settings are fixed per browser launch / context, so an
      identity is built once per worker and never mutated.
    - Routing directives follow the residential provider convention
      `{user}-type-residential-country-{cc}-session-{id}-lifetime-{minutes}`.
      A `username_template` containing `{username}`, `{country}`, `{session}`
      and `{lifetime}` placeholders overrides that layout.
    """

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        *,
        username_template: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.host = host
        self.port = int(port)
        self.username = (username or "").strip()
        self.password = (password or "").strip()
        self.username_template = (username_template or "").strip() or None
        self._clock = clock

    @classmethod
    def from_settings(cls, settings, *, clock: Callable[[], float] = time.time) -> "ProxyIdentityBuilder":
        """Build from a RunSettings object."""
        return cls(
            settings.proxy_host,
            settings.proxy_port,
            settings.proxy_username,
            settings.proxy_password,
            username_template=settings.proxy_username_template,
            clock=clock,
        )

    def _build_username(self, mode: ProxyMode, country: str, session_id: Optional[str], lifetime_minutes: int) -> str:
        sticky = mode == ProxyMode.STICKY
        if self.username_template:
            rendered = self.username_template.format(
                username=self.username,
                country=country,
                session=session_id or "",
                lifetime=lifetime_minutes if sticky else "",
            )
            if not sticky:
                # Rotating mode has no session or lifetime; drop their empty directives.
                rendered = _EMPTY_DIRECTIVE.sub("", rendered)
            return rendered

        parts = [self.username, f"type-{PROXY_TYPE}", f"country-{country}"]
        if sticky and session_id:
            parts.append(f"session-{session_id}")
            parts.append(f"lifetime-{lifetime_minutes}")
        return "-".join(parts)

    def build(
        self,
        worker_id: int,
        mode: ProxyMode = ProxyMode.STICKY,
        country: str = "us",
        lifetime_minutes: int = 10,
    ) -> ProxyIdentity:
        """Compose the identity for one worker. Pure string work, no I/O."""
        mode = ProxyMode(mode)
        country = (country or "").strip().lower()
        session_id = _session_token(worker_id, self._clock()) if mode == ProxyMode.STICKY else None
        username = self._build_username(mode, country, session_id, int(lifetime_minutes))

        identity = ProxyIdentity(
            host=self.host,
            port=self.port,
            username=username,
            password=self.password,
            mode=mode,
            country=country,
            session_id=session_id,
            lifetime_minutes=int(lifetime_minutes),
        )
        logger.debug("Proxy identity built for worker %s: %s", worker_id, identity)
        return identity
