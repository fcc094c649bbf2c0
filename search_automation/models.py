"""
Data models for Search Session Automation
Defines proxy identities, result hits, attempt outcomes and worker reports
"""

from enum import Enum
from typing import Dict, List, Optional
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict, Field


class ProxyMode(str, Enum):
    """Upstream proxy routing mode"""

    STICKY = "sticky"
    ROTATING = "rotating"


class AttemptStatus(str, Enum):
    """Terminal reason of one keyword attempt"""

    SUCCESS = "success"
    BLOCKED_ON_LANDING = "blocked_on_landing"
    BLOCKED_AFTER_SEARCH = "blocked_after_search"
    SEARCH_BOX_NOT_FOUND = "search_box_not_found"
    NOT_SEARCH_PAGE = "not_search_page"
    TRANSIENT_ERROR = "transient_error"


class SessionState(str, Enum):
    """States of the search session state machine, in reachable order"""

    INIT = "init"
    LANDING_LOADED = "landing_loaded"
    CONSENT_RESOLVED = "consent_resolved"
    LANDING_BLOCK_CHECKED = "landing_block_checked"
    QUERY_BOX_READY = "query_box_ready"
    QUERY_TYPED = "query_typed"
    SUBMITTED = "submitted"
    RESULT_BLOCK_CHECKED = "result_block_checked"
    RESULT_PAGE_VERIFIED = "result_page_verified"
    EXTRACTED = "extracted"


class ProxyIdentity(BaseModel):
    """Credentials and routing directives for one worker's proxy connection"""

    model_config = ConfigDict(frozen=True)

    host: str
    port: int
    username: str
    password: str
    mode: ProxyMode
    country: str
    session_id: Optional[str] = None
    lifetime_minutes: int = 10

    @property
    def server(self) -> str:
        return f"http://{self.host}:{self.port}"

    def to_playwright_proxy(self) -> Dict[str, str]:
        """
        Return Playwright proxy dict.

        Example:
          {"server": "http://host:port", "username": "...", "password": "..."}
        """
        proxy: Dict[str, str] = {"server": self.server}
        if self.username:
            proxy["username"] = self.username
        if self.password:
            proxy["password"] = self.password
        return proxy

    def to_requests_proxies(self) -> Dict[str, str]:
        """Return a `requests` proxies mapping routed through the same identity"""
        auth = ""
        if self.username:
            auth = quote(self.username, safe="")
            if self.password:
                auth = f"{auth}:{quote(self.password, safe='')}"
            auth = f"{auth}@"
        url = f"http://{auth}{self.host}:{self.port}"
        return {"http": url, "https": url}

    def __str__(self) -> str:
        session = self.session_id or "-"
        return f"{self.mode.value} proxy {self.host}:{self.port} ({self.country}, session={session})"


class ResultHit(BaseModel):
    """Represents a single organic search result"""

    title: str = Field(min_length=1)
    url: str = Field(min_length=1)
    snippet: Optional[str] = None

    def __str__(self) -> str:
        return f"{self.title} <{self.url}>"


class AttemptOutcome(BaseModel):
    """Result of running the state machine once for one keyword"""

    status: AttemptStatus
    url: str = ""
    title: str = ""
    results: List[ResultHit] = Field(default_factory=list)
    states: List[SessionState] = Field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == AttemptStatus.SUCCESS

    @property
    def final_state(self) -> Optional[SessionState]:
        return self.states[-1] if self.states else None

    def reached(self, state: SessionState) -> bool:
        return state in self.states


class IpInfo(BaseModel):
    """Subset of the ip-api.com JSON payload"""

    model_config = ConfigDict(populate_by_name=True)

    query: str
    country: Optional[str] = None
    region_name: Optional[str] = Field(default=None, alias="regionName")
    city: Optional[str] = None

    def __str__(self) -> str:
        return (
            f"IP: {self.query} | Country: {self.country} | "
            f"Region: {self.region_name} | City: {self.city}"
        )


class WorkerReport(BaseModel):
    """Everything one worker observed while working its keyword"""

    worker_id: int
    keyword: str
    attempts: int = 0
    outcomes: List[AttemptOutcome] = Field(default_factory=list)
    final_status: Optional[AttemptStatus] = None
    ip_info: Optional[IpInfo] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.final_status == AttemptStatus.SUCCESS

    @property
    def results(self) -> List[ResultHit]:
        for outcome in reversed(self.outcomes):
            if outcome.ok:
                return outcome.results
        return []

    def __str__(self) -> str:
        status = self.final_status.value if self.final_status else "no outcome"
        return f"Worker {self.worker_id} '{self.keyword}': {status} after {self.attempts} attempt(s)"
