"""Tests for proxy rule validation, header handling and path rewriting."""

import json
import unittest
from types import SimpleNamespace

import httpx
from fastapi import Request

from frontdoor.router.proxy import (
    ProxyHooks,
    ProxyRuleEngine,
    _sanitize_request_headers,
    _sanitize_response_headers,
    transport_error_code,
)
from frontdoor.router.proxy_config import ProxyRule


def make_engine(hooks=None) -> ProxyRuleEngine:
    return ProxyRuleEngine(lambda: None, hooks=hooks)


class TestBuildHandler(unittest.TestCase):
    def test_registered_count_matches_valid_rules(self):
        rules = [
            ProxyRule.from_mapping({"path": "/api", "target": "http://backend:8080"}),
            ProxyRule.from_mapping({"path": "/no-target"}),
            ProxyRule.from_mapping({"target": "http://no-path"}),
            ProxyRule.from_mapping({"path": "/templated", "target": "http://${UNSET_HOST}"}),
            ProxyRule.from_mapping({"path": "/auth", "target": "https://idp.example"}),
        ]
        router = SimpleNamespace(routes=[])
        with self.assertLogs("frontdoor.router.proxy", level="WARNING") as cm:
            handlers = make_engine().mount(router, rules)

        self.assertEqual([h.prefix for h in handlers], ["/api", "/auth"])
        self.assertEqual(len(router.routes), 2)
        self.assertTrue(any("UNSET_HOST" in line for line in cm.output))
        self.assertTrue(any("missing path or target" in line for line in cm.output))

    def test_mount_with_no_rules(self):
        router = SimpleNamespace(routes=[])
        self.assertEqual(make_engine().mount(router, None), [])
        self.assertEqual(router.routes, [])

    def test_invalid_path_rewrite_skips_rule(self):
        rule = ProxyRule.from_mapping({"path": "/api", "target": "http://x", "options": {"pathRewrite": {"(": ""}}})
        with self.assertLogs("frontdoor.router.proxy", level="WARNING"):
            self.assertIsNone(make_engine().build_handler(rule))

    def test_non_object_options_skips_rule(self):
        rule = ProxyRule.from_mapping({"path": "/api", "target": "http://x", "options": ["changeOrigin"]})
        with self.assertLogs("frontdoor.router.proxy", level="WARNING"):
            self.assertIsNone(make_engine().build_handler(rule))

    def test_string_booleans_skip_rule(self):
        for option in ("changeOrigin", "xfwd"):
            rule = ProxyRule.from_mapping({"path": "/api", "target": "http://x", "options": {option: "false"}})
            with self.assertLogs("frontdoor.router.proxy", level="WARNING") as cm:
                self.assertIsNone(make_engine().build_handler(rule))
            self.assertTrue(any(option in line for line in cm.output))

    def test_string_rate_limit_enabled_skips_rule(self):
        rule = ProxyRule.from_mapping({"path": "/api", "target": "http://x", "rateLimit": {"enabled": "false"}})
        with self.assertLogs("frontdoor.router.proxy", level="WARNING"):
            self.assertIsNone(make_engine().build_handler(rule))

    def test_non_latin1_extra_header_skips_rule(self):
        rule = ProxyRule.from_mapping({"path": "/api", "target": "http://x", "options": {"headers": {"X-Brand": "€"}}})
        with self.assertLogs("frontdoor.router.proxy", level="WARNING"):
            self.assertIsNone(make_engine().build_handler(rule))

    def test_rule_limiter_defaults_and_disable(self):
        engine = make_engine()
        default = engine.build_handler(ProxyRule.from_mapping({"path": "/a", "target": "http://x"}))
        self.assertEqual((default.limiter.window_ms, default.limiter.max), (60000, 100))

        disabled = engine.build_handler(
            ProxyRule.from_mapping({"path": "/b", "target": "http://x", "options": {"rateLimit": {"enabled": False}}})
        )
        self.assertIsNone(disabled.limiter)

    def test_each_rule_gets_its_own_limiter(self):
        engine = make_engine()
        first = engine.build_handler(ProxyRule.from_mapping({"path": "/a", "target": "http://x"}))
        second = engine.build_handler(ProxyRule.from_mapping({"path": "/b", "target": "http://x"}))
        self.assertIsNot(first.limiter, second.limiter)

    def test_prefix_is_normalized(self):
        handler = make_engine().build_handler(ProxyRule.from_mapping({"path": "api", "target": "http://x/"}))
        self.assertEqual(handler.prefix, "/api")
        self.assertEqual(handler.target, "http://x")
        self.assertTrue(handler.matches("/api/users"))
        self.assertFalse(handler.matches("/web"))

    def test_path_rewrite_first_match_only(self):
        rule = ProxyRule.from_mapping(
            {
                "path": "/api",
                "target": "http://x",
                "options": {"pathRewrite": {"^/api/v1": "/v1", "^/api": ""}},
            }
        )
        handler = make_engine().build_handler(rule)
        self.assertEqual(handler.rewrite_path("/api/v1/users"), "/v1/users")
        self.assertEqual(handler.rewrite_path("/api/users"), "/users")
        self.assertEqual(handler.rewrite_path("/other"), "/other")

    def test_hooks_order_builtin_then_engine_then_rule(self):
        engine_hook = lambda *args: None  # noqa: E731
        rule_hook = lambda *args: None  # noqa: E731
        rule = ProxyRule(path="/api", target="http://x", options={"onProxyReq": rule_hook})
        handler = make_engine(ProxyHooks(on_proxy_req=[engine_hook])).build_handler(rule)
        self.assertEqual(len(handler.hooks.on_proxy_req), 3)
        self.assertIs(handler.hooks.on_proxy_req[1], engine_hook)
        self.assertIs(handler.hooks.on_proxy_req[2], rule_hook)
        self.assertEqual(len(handler.hooks.on_error), 1)

    def test_bad_hook_option_skips_rule(self):
        rule = ProxyRule(path="/api", target="http://x", options={"onError": "not callable"})
        with self.assertLogs("frontdoor.router.proxy", level="WARNING"):
            self.assertIsNone(make_engine().build_handler(rule))


class TestHeaderSanitization(unittest.TestCase):
    def test_request_drops_hop_by_hop_host_and_connection_tokens(self):
        raw = [
            (b"host", b"front.example"),
            (b"connection", b"keep-alive, X-Remove"),
            (b"keep-alive", b"timeout=5"),
            (b"x-remove", b"value"),
            (b"transfer-encoding", b"chunked"),
            (b"authorization", b"Bearer xyz"),
            (b"x-custom", b"ok"),
        ]
        names = [name for name, _ in _sanitize_request_headers(raw)]
        self.assertEqual(names, [b"authorization", b"x-custom"])

    def test_request_keeps_latin1_value_bytes(self):
        sanitized = _sanitize_request_headers([(b"X-Name", b"caf\xe9")])
        self.assertEqual(sanitized, [(b"x-name", b"caf\xe9")])

    def test_response_keeps_repeated_headers_and_encoding(self):
        headers = httpx.Headers(
            [
                ("Set-Cookie", "a=1"),
                ("Set-Cookie", "b=2"),
                ("Content-Encoding", "gzip"),
                ("Content-Length", "10"),
                ("Transfer-Encoding", "chunked"),
                ("Connection", "X-Remove"),
                ("X-Remove", "value"),
            ]
        )
        sanitized = _sanitize_response_headers(headers.raw)
        cookies = [value for name, value in sanitized if name == b"set-cookie"]
        names = {name for name, _ in sanitized}
        self.assertEqual(cookies, [b"a=1", b"b=2"])
        self.assertIn(b"content-encoding", names)
        self.assertIn(b"content-length", names)
        self.assertNotIn(b"transfer-encoding", names)
        self.assertNotIn(b"x-remove", names)

    def test_response_keeps_utf8_value_bytes(self):
        headers = httpx.Headers([(b"X-Title", "€uro".encode("utf-8"))])
        self.assertEqual(_sanitize_response_headers(headers.raw), [(b"x-title", "€uro".encode("utf-8"))])


class TestTransportErrorCode(unittest.TestCase):
    def test_codes(self):
        request = httpx.Request("GET", "http://x")
        self.assertEqual(transport_error_code(httpx.ConnectError("refused", request=request)), "ECONNREFUSED")
        self.assertEqual(transport_error_code(httpx.ReadTimeout("slow", request=request)), "ETIMEDOUT")
        self.assertEqual(transport_error_code(httpx.ConnectTimeout("slow", request=request)), "ETIMEDOUT")
        self.assertEqual(transport_error_code(httpx.RemoteProtocolError("eof", request=request)), "ECONNRESET")
        self.assertEqual(transport_error_code(httpx.UnsupportedProtocol("ftp", request=request)), "UnsupportedProtocol")


class TrackingStream(httpx.AsyncByteStream):
    def __init__(self, body: bytes):
        self.body = body
        self.closed = False

    async def __aiter__(self):
        yield self.body

    async def aclose(self) -> None:
        self.closed = True


def make_request(path: str = "/api/x", headers=(), raw_path: bytes | None = None) -> Request:
    scope = {
        "type": "http",
        "http_version": "1.1",
        "method": "GET",
        "scheme": "http",
        "path": path,
        "raw_path": raw_path if raw_path is not None else path.encode("latin-1"),
        "root_path": "",
        "query_string": b"",
        "headers": [(b"host", b"front.example")] + list(headers),
        "client": ("10.0.0.1", 50000),
        "server": ("front.example", 80),
    }

    async def receive():
        return {"type": "http.request", "body": b"", "more_body": False}

    return Request(scope, receive)


class TestProxyHandlerForwarding(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.sent: list[httpx.Request] = []
        self.reply = lambda request: httpx.Response(200, stream=httpx.ByteStream(b"ok"))
        self.client = httpx.AsyncClient(transport=httpx.MockTransport(self._transport))

    async def asyncTearDown(self):
        await self.client.aclose()

    def _transport(self, request: httpx.Request) -> httpx.Response:
        self.sent.append(request)
        return self.reply(request)

    def make_handler(self, hooks=None, options=None):
        rule = ProxyRule.from_mapping({"path": "/api", "target": "http://backend.test", "options": options or {}})
        return ProxyRuleEngine(lambda: self.client, hooks=hooks).build_handler(rule)

    async def test_latin1_request_header_bytes_forwarded(self):
        response = await self.make_handler()(make_request(headers=[(b"x-name", b"caf\xe9")]))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(dict(self.sent[-1].headers.raw)[b"x-name"], b"caf\xe9")

    async def test_utf8_response_header_bytes_relayed(self):
        title = "€uro".encode("utf-8")
        self.reply = lambda request: httpx.Response(200, headers=[(b"X-Title", title)], stream=httpx.ByteStream(b"ok"))
        response = await self.make_handler()(make_request())
        self.assertIn((b"x-title", title), response.raw_headers)

    async def test_cookie_values_joined_and_origin_rewritten(self):
        headers = [(b"cookie", b"a=1"), (b"cookie", b"b=2"), (b"origin", b"http://front.example")]
        await self.make_handler()(make_request(headers=headers))
        sent = self.sent[-1].headers
        self.assertEqual(sent["cookie"], "a=1; b=2")
        self.assertEqual(sent["origin"], "http://backend.test")

    async def test_raw_path_used_for_upstream_url(self):
        await self.make_handler()(make_request(path="/api/a/b", raw_path=b"/api/a%2Fb"))
        self.assertEqual(self.sent[-1].url.raw_path, b"/api/a%2Fb")

    async def test_failing_response_observer_closes_upstream(self):
        stream = TrackingStream(b"ok")
        self.reply = lambda request: httpx.Response(200, stream=stream)

        def broken(upstream_response, request, rule):
            raise RuntimeError("hook bug")

        handler = self.make_handler(hooks=ProxyHooks(on_proxy_res=[broken]))
        with self.assertLogs("frontdoor.router.proxy", level="ERROR"):
            response = await handler(make_request())
        self.assertEqual(response.status_code, 500)
        self.assertEqual(json.loads(response.body)["error"], "Internal Server Error")
        self.assertTrue(stream.closed)


if __name__ == "__main__":
    unittest.main()
