# clickwise/handlers.py
import enum
import logging
import re
import uuid
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence
from urllib.parse import urlparse

import orjson
import requests

from clickwise.errors import ConfigurationError
from clickwise.tasks import TaskRunner

log = logging.getLogger(__name__)

GA_ENDPOINT = "https://www.google-analytics.com/mp/collect"
GA_MEASUREMENT_ID = re.compile(r"^G-[A-Z0-9]+$")
ADMIN_PATHS = ("/wp-admin", "/wp-login")

Interceptor = Callable[[str, Dict[str, Any]], bool]


class Transport:
    """requests wrapper that consults interceptors before sending.

    An interceptor returning False suppresses the request; the call then
    returns None.
    """

    def __init__(self, session: Optional[requests.Session] = None, timeout: float = 10,
                 interceptors: Sequence[Interceptor] = ()):
        self.session = session or requests.Session()
        self.timeout = timeout
        self.interceptors: List[Interceptor] = list(interceptors)

    def _allowed(self, url: str, payload: Any) -> bool:
        for interceptor in self.interceptors:
            if not interceptor(url, payload):
                log.debug("request to %s suppressed by %s", url, getattr(interceptor, "__name__", interceptor))
                return False
        return True

    def post(self, url: str, *, json: Any = None, data: Any = None,
             params: Optional[Dict[str, Any]] = None) -> Optional[requests.Response]:
        if not self._allowed(url, json if json is not None else (data or {})):
            return None
        resp = self.session.post(url, json=json, data=data, params=params, timeout=self.timeout)
        resp.raise_for_status()
        return resp

    def get(self, url: str, *, params: Optional[Dict[str, Any]] = None,
            headers: Optional[Dict[str, str]] = None) -> Optional[requests.Response]:
        if not self._allowed(url, params or {}):
            return None
        resp = self.session.get(url, params=params, headers=headers, timeout=self.timeout)
        resp.raise_for_status()
        return resp


def _is_admin_path(value: Any) -> bool:
    path = urlparse(str(value or "")).path
    return path.startswith(ADMIN_PATHS)


def skip_admin_pages(url: str, payload: Dict[str, Any]) -> bool:
    """Drop analytics sent for pages under the WordPress admin or login."""
    if not isinstance(payload, dict):
        return True
    if _is_admin_path(payload.get("pathname")):
        return False
    for event in payload.get("events") or ():
        params = event.get("params") if isinstance(event, dict) else None
        if isinstance(params, dict) and _is_admin_path(params.get("page")):
            return False
    return True


class HandlerState(enum.Enum):
    NOT_STARTED = "not-started"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


class AnalyticsHandler:
    name = "handler"

    def __init__(self, transport: Optional[Transport] = None):
        self.transport = transport or Transport()
        self.state = HandlerState.NOT_STARTED
        self.error: Optional[str] = None

    def validate(self) -> None:
        """Raise ConfigurationError when the handler cannot send."""

    def prepare(self) -> HandlerState:
        if self.state is not HandlerState.NOT_STARTED:
            return self.state
        self.state = HandlerState.LOADING
        try:
            self.validate()
        except ConfigurationError as e:
            self.state = HandlerState.FAILED
            self.error = str(e)
            log.warning("%s handler disabled: %s", self.name, e)
        else:
            self.state = HandlerState.READY
        return self.state

    @property
    def ready(self) -> bool:
        return self.prepare() is HandlerState.READY

    def forward(self, name: str, properties: Dict[str, Any]) -> None:
        raise NotImplementedError


class RybbitHandler(AnalyticsHandler):
    name = "rybbit"

    def __init__(self, host: str, site_id: str, transport: Optional[Transport] = None,
                 page_url: Optional[str] = None):
        super().__init__(transport)
        self.host = (host or "").rstrip("/")
        self.site_id = site_id
        self.page_url = page_url

    def validate(self) -> None:
        if not self.host:
            raise ConfigurationError("Rybbit host is required")
        if not self.site_id:
            raise ConfigurationError("Rybbit site id is required")

    @property
    def endpoint(self) -> str:
        base = self.host if self.host.endswith("/api") else self.host + "/api"
        return base + "/track"

    def forward(self, name: str, properties: Dict[str, Any]) -> None:
        page = urlparse(str(properties.get("page") or self.page_url or ""))
        body = {
            "site_id": self.site_id,
            "type": "custom_event",
            "event_name": name,
            "hostname": page.hostname or "",
            "pathname": page.path or "/",
            "properties": orjson.dumps(properties, default=str).decode(),
        }
        self.transport.post(self.endpoint, json=body)


def sanitize_ga_event_name(name: str) -> str:
    return re.sub(r"[^a-zA-Z0-9_]", "_", name)[:40]


class GoogleAnalyticsHandler(AnalyticsHandler):
    name = "ga"

    def __init__(self, measurement_id: str, api_secret: str, transport: Optional[Transport] = None,
                 client_id: Optional[str] = None):
        super().__init__(transport)
        self.measurement_id = measurement_id
        self.api_secret = api_secret
        self.client_id = client_id or str(uuid.uuid4())

    def validate(self) -> None:
        if not self.measurement_id:
            raise ConfigurationError("GA4 measurement id is required")
        if not GA_MEASUREMENT_ID.match(self.measurement_id):
            raise ConfigurationError("invalid GA4 measurement id, should start with G-")
        if not self.api_secret:
            raise ConfigurationError("GA4 API secret is required")

    def forward(self, name: str, properties: Dict[str, Any]) -> None:
        params = {
            k: v if isinstance(v, (str, int, float, bool)) else orjson.dumps(v, default=str).decode()
            for k, v in properties.items() if v is not None
        }
        body = {
            "client_id": self.client_id,
            "events": [{"name": sanitize_ga_event_name(name), "params": params}],
        }
        self.transport.post(
            GA_ENDPOINT,
            json=body,
            params={"measurement_id": self.measurement_id, "api_secret": self.api_secret},
        )


class HandlerDispatcher:
    def __init__(self, handlers: Iterable[AnalyticsHandler] = (), runner: Optional[TaskRunner] = None):
        self.handlers = list(handlers)
        self.runner = runner or TaskRunner()

    def forward(self, name: str, properties: Optional[Dict[str, Any]] = None) -> int:
        """Queue ``name`` on every ready handler; returns how many were used."""
        properties = dict(properties or {})
        used = 0
        for handler in self.handlers:
            if not handler.ready:
                log.debug("skipping %s for %s: %s", handler.name, name, handler.error)
                continue
            self.runner.spawn(handler.forward, name, properties)
            used += 1
        return used
