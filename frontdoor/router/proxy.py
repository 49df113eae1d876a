"""
Reverse-proxy rules.

Each valid rule becomes a ProxyHandler bound to its target origin and is
registered as a ProxyRoute that claims every request whose path starts with
the rule's prefix. Rules are registered in document order, so the first
matching rule wins.

Every handler runs three observer lists: on_proxy_req before the upstream
request is sent, on_proxy_res when upstream headers arrive and on_error on a
transport failure. The built-in logging observer always runs first and
caller-supplied observers run after it.
"""

import inspect
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from urllib.parse import urlsplit

import httpx
from fastapi import Request
from fastapi.responses import JSONResponse, Response, StreamingResponse
from starlette.background import BackgroundTask
from starlette.routing import BaseRoute, Match, NoMatchFound
from starlette.types import Receive, Scope, Send

from frontdoor.errors import RateLimitExceeded, RuleValidationError, UpstreamTransportError
from frontdoor.router.connection_pool import build_timeout
from frontdoor.router.proxy_config import ProxyRule
from frontdoor.router.rate_limit import (
    RULE_SCOPE,
    FixedWindowRateLimiter,
    enforce,
    make_limiter,
    rate_limited_response,
)
from frontdoor.router.responses import internal_error_response
from frontdoor.structured_logging import RequestLogger

logger = logging.getLogger("frontdoor.router.proxy")

HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "trailers",
    "transfer-encoding",
    "upgrade",
}
_HOP_BY_HOP_RAW = {name.encode("latin-1") for name in HOP_BY_HOP_HEADERS}

# Forwarded explicitly even if sanitizing or a client default would drop them
CREDENTIAL_HEADERS = (b"cookie", b"authorization")

HOOK_OPTION_NAMES = {
    "on_proxy_req": "onProxyReq",
    "on_proxy_res": "onProxyRes",
    "on_error": "onError",
}


async def _call_observer(observer: Callable, *args):
    result = observer(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


def _as_observer_list(value) -> list[Callable]:
    if value is None:
        return []
    if callable(value):
        return [value]
    if isinstance(value, (list, tuple)) and all(callable(item) for item in value):
        return list(value)
    raise TypeError("hook must be a callable or a list of callables")


@dataclass
class ProxyHooks:
    """
    Ordered observer lists for the three proxy events.

    Observer signatures:
        on_proxy_req(upstream_request: httpx.Request, request: Request, rule: ProxyRule)
        on_proxy_res(upstream_response: httpx.Response, request: Request, rule: ProxyRule)
        on_error(error: UpstreamTransportError, request: Request, rule: ProxyRule) -> Response | None

    Observers may be sync or async. An on_error observer that returns a
    Response replaces the default 502.
    """

    on_proxy_req: list[Callable] = field(default_factory=list)
    on_proxy_res: list[Callable] = field(default_factory=list)
    on_error: list[Callable] = field(default_factory=list)

    def then(self, other: "ProxyHooks | None") -> "ProxyHooks":
        """New hooks running this set's observers followed by other's."""
        if other is None:
            return ProxyHooks(list(self.on_proxy_req), list(self.on_proxy_res), list(self.on_error))
        return ProxyHooks(
            self.on_proxy_req + other.on_proxy_req,
            self.on_proxy_res + other.on_proxy_res,
            self.on_error + other.on_error,
        )

    @classmethod
    def from_options(cls, options: dict) -> "ProxyHooks":
        """Pick up onProxyReq / onProxyRes / onError callables set on a rule built in code."""
        return cls(**{attr: _as_observer_list(options.get(key)) for attr, key in HOOK_OPTION_NAMES.items()})


def _request_logger(request: Request) -> RequestLogger:
    return RequestLogger(logger, getattr(request.state, "request_id", "-"))


def log_proxy_request(upstream_request: httpx.Request, request: Request, rule: ProxyRule) -> None:
    _request_logger(request).info(
        "Proxying %s %s -> %s",
        request.method,
        request.url.path,
        upstream_request.url,
        extra={"method": request.method, "path": request.url.path, "target": rule.target},
    )


def log_proxy_response(upstream_response: httpx.Response, request: Request, rule: ProxyRule) -> None:
    _request_logger(request).info(
        "Proxy response %d for %s %s",
        upstream_response.status_code,
        request.method,
        request.url.path,
        extra={
            "method": request.method,
            "path": request.url.path,
            "target": rule.target,
            "status": upstream_response.status_code,
        },
    )


def log_proxy_error(error: UpstreamTransportError, request: Request, rule: ProxyRule) -> None:
    _request_logger(request).error(
        "Proxy error for %s %s -> %s: %s",
        request.method,
        request.url.path,
        rule.target,
        error,
        extra={"method": request.method, "path": request.url.path, "target": rule.target, "code": error.code},
    )


BUILTIN_HOOKS = ProxyHooks(
    on_proxy_req=[log_proxy_request],
    on_proxy_res=[log_proxy_response],
    on_error=[log_proxy_error],
)


def transport_error_code(exc: httpx.RequestError) -> str:
    if isinstance(exc, httpx.TimeoutException):
        return "ETIMEDOUT"
    if isinstance(exc, httpx.ConnectError):
        return "ECONNREFUSED"
    if isinstance(exc, (httpx.ReadError, httpx.WriteError, httpx.RemoteProtocolError)):
        return "ECONNRESET"
    return type(exc).__name__


def proxy_error_response(error: UpstreamTransportError) -> JSONResponse:
    return JSONResponse(
        {
            "error": "Proxy Error",
            "message": "Failed to proxy request to upstream server",
            "details": str(error),
            "code": error.code,
            "path": error.path,
        },
        status_code=502,
    )


RawHeaders = list[tuple[bytes, bytes]]


def _connection_tokens(pairs: RawHeaders) -> set[bytes]:
    tokens = set()
    for name, value in pairs:
        if name.lower() == b"connection":
            tokens.update(token.strip().lower() for token in value.split(b",") if token.strip())
    return tokens


def _without_hop_by_hop(pairs: RawHeaders, extra: frozenset[bytes] = frozenset()) -> RawHeaders:
    dropped = _HOP_BY_HOP_RAW | _connection_tokens(pairs) | extra
    return [(name.lower(), value) for name, value in pairs if name.lower() not in dropped]


def _sanitize_request_headers(raw: RawHeaders) -> RawHeaders:
    """Inbound header bytes minus hop-by-hop headers, Connection-listed headers and Host."""
    return _without_hop_by_hop(raw, frozenset({b"host"}))


def _sanitize_response_headers(raw: RawHeaders) -> RawHeaders:
    """Upstream header bytes minus hop-by-hop headers, keeping repeated headers such as Set-Cookie."""
    return _without_hop_by_hop(raw)


def _replace_header(pairs: RawHeaders, name: bytes, value: bytes) -> RawHeaders:
    return [(n, v) for n, v in pairs if n != name] + [(name, value)]


def _header_values(raw: RawHeaders, name: bytes) -> list[bytes]:
    return [value for n, value in raw if n.lower() == name]


def _raw_path(request: Request) -> str:
    # Keep percent-escapes such as %2F and %3F exactly as the client sent them
    raw_path = request.scope.get("raw_path")
    if raw_path is None:
        return request.url.path
    return raw_path.split(b"?", 1)[0].decode("latin-1")


def _bool_option(rule: ProxyRule, name: str, default: bool) -> bool:
    value = rule.options.get(name, default)
    if not isinstance(value, bool):
        raise RuleValidationError(f"Skipping proxy {rule.path}: {name} must be true or false", rule_path=rule.path)
    return value


def _encode_extra_headers(rule: ProxyRule) -> RawHeaders:
    headers = rule.options.get("headers") or {}
    if not isinstance(headers, dict):
        raise RuleValidationError(f"Skipping proxy {rule.path}: headers must be an object", rule_path=rule.path)
    try:
        return [(str(name).lower().encode("latin-1"), str(value).encode("latin-1")) for name, value in headers.items()]
    except UnicodeEncodeError as e:
        raise RuleValidationError(f"Skipping proxy {rule.path}: header is not latin-1: {e}", rule_path=rule.path) from None


def _compile_path_rewrite(rule: ProxyRule) -> list[tuple[re.Pattern, str]]:
    rewrite = rule.options.get("pathRewrite") or {}
    if not isinstance(rewrite, dict):
        raise RuleValidationError(f"Skipping proxy {rule.path}: pathRewrite must be an object", rule_path=rule.path)
    compiled = []
    for pattern, replacement in rewrite.items():
        try:
            compiled.append((re.compile(pattern), str(replacement)))
        except re.error as e:
            raise RuleValidationError(
                f"Skipping proxy {rule.path}: invalid pathRewrite pattern {pattern!r}: {e}", rule_path=rule.path
            ) from None
    return compiled


class ProxyHandler:
    """Forward requests under one rule's prefix to its target."""

    def __init__(
        self,
        rule: ProxyRule,
        client_provider: Callable[[], httpx.AsyncClient],
        limiter: FixedWindowRateLimiter | None = None,
        hooks: ProxyHooks | None = None,
    ):
        self.rule = rule
        self.prefix = rule.path if rule.path.startswith("/") else f"/{rule.path}"
        self.target = rule.target.rstrip("/")
        self.limiter = limiter
        self.hooks = hooks or BUILTIN_HOOKS.then(None)
        self._client_provider = client_provider

        options = rule.options
        self.change_origin = _bool_option(rule, "changeOrigin", True)
        self.xfwd = _bool_option(rule, "xfwd", False)
        self.extra_headers = _encode_extra_headers(rule)
        self.path_rewrite = _compile_path_rewrite(rule)
        timeout_ms = options.get("proxyTimeout") or options.get("timeout")
        self.timeout = build_timeout(float(timeout_ms) / 1000.0) if timeout_ms else None

        parts = urlsplit(self.target)
        self.target_origin = f"{parts.scheme}://{parts.netloc}" if parts.scheme and parts.netloc else self.target
        self._origin_header = self.target_origin.encode("latin-1")

    def matches(self, path: str) -> bool:
        return path.startswith(self.prefix)

    def rewrite_path(self, path: str) -> str:
        for pattern, replacement in self.path_rewrite:
            if pattern.search(path):
                return pattern.sub(lambda _m: replacement, path, count=1)
        return path

    def upstream_url(self, request: Request) -> str:
        url = self.target + self.rewrite_path(_raw_path(request))
        query = request.scope.get("query_string", b"")
        if query:
            url = f"{url}?{query.decode('latin-1')}"
        return url

    def upstream_headers(self, request: Request) -> httpx.Headers:
        raw = request.headers.raw
        pairs = _sanitize_request_headers(raw)

        if self.change_origin:
            if _header_values(pairs, b"origin"):
                pairs = _replace_header(pairs, b"origin", self._origin_header)
        else:
            host = _header_values(raw, b"host")
            if host:
                pairs = _replace_header(pairs, b"host", host[0])

        for name in CREDENTIAL_HEADERS:
            values = _header_values(raw, name)
            if values:
                pairs = _replace_header(pairs, name, b"; ".join(values) if name == b"cookie" else values[-1])

        if self.xfwd:
            client_ip = (request.client.host if request.client else "unknown").encode("latin-1")
            previous = _header_values(raw, b"x-forwarded-for")
            pairs = _replace_header(pairs, b"x-forwarded-for", b", ".join(previous + [client_ip]))
            pairs = _replace_header(pairs, b"x-forwarded-host", (_header_values(raw, b"host") or [b""])[0])
            pairs = _replace_header(pairs, b"x-forwarded-proto", (request.url.scheme or "http").encode("latin-1"))

        for name, value in self.extra_headers:
            pairs = _replace_header(pairs, name, value)
        return httpx.Headers(pairs)

    def _request_content(self, request: Request):
        # Only forward a body when the client announced one
        if "content-length" in request.headers or "transfer-encoding" in request.headers:
            return request.stream()
        return None

    def _response_headers(self, upstream_response: httpx.Response) -> RawHeaders:
        pairs = _sanitize_response_headers(upstream_response.headers.raw)
        if upstream_response.is_stream_consumed:
            # The body was already read and decoded, so it goes out as plain bytes
            pairs = [(n, v) for n, v in pairs if n not in (b"content-encoding", b"content-length")]
            pairs.append((b"content-length", str(len(upstream_response.content)).encode("latin-1")))
        return pairs

    async def __call__(self, request: Request) -> Response:
        if self.limiter is not None:
            try:
                enforce(self.limiter, request, RULE_SCOPE, self.prefix)
            except RateLimitExceeded as exc:
                _request_logger(request).warning(
                    "Rule rate limit exceeded for %s on %s", request.client.host if request.client else "-", self.prefix
                )
                return rate_limited_response(exc)

        client = self._client_provider()
        try:
            build_kwargs = {"headers": self.upstream_headers(request), "content": self._request_content(request)}
            if self.timeout is not None:
                build_kwargs["timeout"] = self.timeout
            upstream_request = client.build_request(request.method, self.upstream_url(request), **build_kwargs)

            for observer in self.hooks.on_proxy_req:
                await _call_observer(observer, upstream_request, request, self.rule)
        except Exception:
            _request_logger(request).error("Failed to prepare proxy request for %s", request.url.path, exc_info=True)
            return internal_error_response(request)

        try:
            upstream_response = await client.send(upstream_request, stream=True)
        except httpx.RequestError as exc:
            return await self._handle_transport_error(exc, request)

        try:
            for observer in self.hooks.on_proxy_res:
                await _call_observer(observer, upstream_response, request, self.rule)
            response_headers = self._response_headers(upstream_response)
        except Exception:
            await upstream_response.aclose()
            _request_logger(request).error("Proxy response hook failed for %s", request.url.path, exc_info=True)
            return internal_error_response(request)
        except BaseException:
            await upstream_response.aclose()
            raise

        response = StreamingResponse(
            self._relay(upstream_response, request),
            status_code=upstream_response.status_code,
            background=BackgroundTask(upstream_response.aclose),
        )
        response.raw_headers.extend(response_headers)
        return response

    async def _relay(self, upstream_response: httpx.Response, request: Request):
        if upstream_response.is_stream_consumed:
            yield upstream_response.content
            return
        try:
            async for chunk in upstream_response.aiter_raw():
                yield chunk
        except httpx.RequestError as exc:
            # Status line is already sent; all that is left is to log and drop the connection
            _request_logger(request).error(
                "Upstream %s failed mid-response for %s: %s", self.target, request.url.path, exc
            )
            raise

    async def _handle_transport_error(self, exc: httpx.RequestError, request: Request) -> Response:
        error = UpstreamTransportError(
            str(exc) or type(exc).__name__,
            target=self.target,
            code=transport_error_code(exc),
            path=request.url.path,
        )
        intercepted = None
        for observer in self.hooks.on_error:
            result = await _call_observer(observer, error, request, self.rule)
            if intercepted is None and isinstance(result, Response):
                intercepted = result
        return intercepted if intercepted is not None else proxy_error_response(error)


class ProxyRoute(BaseRoute):
    """Route claiming every HTTP request whose path starts with the handler's prefix."""

    def __init__(self, handler: ProxyHandler):
        self.handler = handler
        self.path = handler.prefix
        self.name = f"proxy:{handler.prefix}"

    def matches(self, scope: Scope) -> tuple[Match, Scope]:
        if scope["type"] == "http" and self.handler.matches(scope["path"]):
            return Match.FULL, {}
        return Match.NONE, {}

    def url_path_for(self, name: str, /, **path_params):
        raise NoMatchFound(name, path_params)

    async def handle(self, scope: Scope, receive: Receive, send: Send) -> None:
        response = await self.handler(Request(scope, receive))
        await response(scope, receive, send)

    def __repr__(self) -> str:
        return f"ProxyRoute(path={self.handler.prefix!r}, target={self.handler.target!r})"


class ProxyRuleEngine:
    """Turn proxy rules into handlers and register them on a router."""

    def __init__(self, client_provider: Callable[[], httpx.AsyncClient], hooks: ProxyHooks | None = None, clock=None):
        self._client_provider = client_provider
        self._hooks = hooks
        self._clock = clock

    def _limiter_for(self, rule: ProxyRule) -> FixedWindowRateLimiter | None:
        settings = rule.rate_limit_settings()
        if settings is None:
            return None
        if self._clock is not None:
            return make_limiter(settings.window_ms, settings.max, clock=self._clock)
        return make_limiter(settings.window_ms, settings.max)

    def build_handler(self, rule: ProxyRule) -> ProxyHandler | None:
        """Build the forwarding handler for a rule, or log why it is skipped and return None."""
        try:
            rule.validate()
            hooks = BUILTIN_HOOKS.then(self._hooks).then(ProxyHooks.from_options(rule.options))
            return ProxyHandler(rule, self._client_provider, limiter=self._limiter_for(rule), hooks=hooks)
        except RuleValidationError as e:
            logger.warning("%s", e)
        except (TypeError, ValueError) as e:
            logger.warning("Skipping proxy %s: %s", rule.path or "<missing path>", e)
        return None

    def mount(self, router, rules: list[ProxyRule] | None) -> list[ProxyHandler]:
        """Register a ProxyRoute per valid rule, in order. Returns the registered handlers."""
        handlers: list[ProxyHandler] = []
        if not rules:
            logger.info("No proxy rules to set up")
            return handlers

        for rule in rules:
            handler = self.build_handler(rule)
            if handler is None:
                continue
            router.routes.append(ProxyRoute(handler))
            handlers.append(handler)
            if handler.limiter is not None:
                logger.info(
                    "Proxy %s -> %s (rate limit %d per %dms)",
                    handler.prefix,
                    rule.target,
                    handler.limiter.max,
                    handler.limiter.window_ms,
                )
            else:
                logger.info("Proxy %s -> %s", handler.prefix, rule.target)
        logger.info("Set up %d of %d proxy rule(s)", len(handlers), len(rules))
        return handlers
