"""Unit tests for endpoint resolution and the selection prompt."""

import asyncio
import io
import json
import os
import socket
import time
import unittest
from unittest import mock

import httpx

from inetspeed import endpoint, location
from inetspeed.display import EventKind
from inetspeed.i18n import ENGLISH
from inetspeed.models import Endpoint

from support import collecting_bus, mock_client


def lookup_handler(cf_a=(), ali_a=(), timeout=False):
    """Route DoH and ip-api.com requests for one fake host."""

    def handler(request):
        host = request.url.host
        if host in ("cloudflare-dns.com", "dns.alidns.com"):
            if timeout:
                raise httpx.ReadTimeout("timed out", request=request)
            rtype = request.url.params["type"]
            if host == "cloudflare-dns.com":
                ips = list(cf_a) if rtype == "A" else []
                answer = [{"type": 1, "data": ip} for ip in ips]
                return httpx.Response(200, text=json.dumps({"Status": 0, "Answer": answer}))
            return httpx.Response(200, text=json.dumps(list(ali_a) if rtype == "A" else []))
        if host == "ip-api.com":
            ip = request.url.path.rsplit("/", 1)[-1]
            return httpx.Response(200, json={
                "status": "success", "query": ip, "city": f"City-{ip}", "country": "Nowhere",
                "as": "AS64500 Example",
            })
        return httpx.Response(404)

    return handler


def fixed_input(text):
    return lambda: (io.StringIO(text), False)


class TestHelpers(unittest.TestCase):

    def test_host_from_url(self):
        self.assertEqual(endpoint.host_from_url("https://mensura.cdn-apple.com/api/v1/gm/large"),
                         "mensura.cdn-apple.com")
        self.assertEqual(endpoint.host_from_url("http://[2001:db8::1]:8080/x"), "2001:db8::1")
        self.assertEqual(endpoint.host_from_url("not a url"), "")
        self.assertEqual(endpoint.host_from_url("http://[bad/"), "")

    def test_parse_choice(self):
        self.assertEqual(endpoint.parse_choice("2\n", 3), (1, True))
        self.assertEqual(endpoint.parse_choice("  3 ", 3), (2, True))
        self.assertEqual(endpoint.parse_choice("\n", 3), (0, True))
        self.assertEqual(endpoint.parse_choice("4", 3), (0, False))
        self.assertEqual(endpoint.parse_choice("0", 3), (0, False))
        self.assertEqual(endpoint.parse_choice("abc", 3), (0, False))


class TestChoose(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        patcher = mock.patch.object(location, "LOOKUP_BACKOFF", 0.01)
        patcher.start()
        self.addCleanup(patcher.stop)

    async def choose(self, handler, host="speed.example", is_tty=False, cancel=None, open_input=None):
        bus, renderer = collecting_bus()
        async with mock_client(handler) as client:
            ep = await endpoint.choose(host, bus, is_tty, ENGLISH, client, cancel, open_input)
        return ep, renderer

    async def test_empty_host(self):
        ep, renderer = await self.choose(lookup_handler(), host="")
        self.assertEqual(ep, Endpoint())
        self.assertEqual(len(renderer.of_kind(EventKind.WARN)), 1)

    async def test_non_interactive_takes_first(self):
        ep, renderer = await self.choose(lookup_handler(cf_a=["1.1.1.1"], ali_a=["2.2.2.2", "1.1.1.1"]))
        self.assertEqual(ep.ip, "1.1.1.1")
        self.assertEqual(ep.description, "City-1.1.1.1, Nowhere (AS64500 Example)")
        listing = [e.value for e in renderer.of_kind(EventKind.INFO) if e.value.startswith("  ")]
        self.assertEqual(len(listing), 2)
        self.assertTrue(listing[1].startswith("  2) 2.2.2.2"))

    async def test_single_candidate_skips_prompt(self):
        def explode():
            raise AssertionError("prompt should not open")

        ep, _ = await self.choose(lookup_handler(cf_a=["1.1.1.1"]), is_tty=True, open_input=explode)
        self.assertEqual(ep.ip, "1.1.1.1")

    async def test_interactive_choice(self):
        ep, _ = await self.choose(
            lookup_handler(cf_a=["1.1.1.1"], ali_a=["2.2.2.2"]),
            is_tty=True, open_input=fixed_input("2\n"),
        )
        self.assertEqual(ep.ip, "2.2.2.2")

    async def test_interactive_empty_line_is_first(self):
        ep, renderer = await self.choose(
            lookup_handler(cf_a=["1.1.1.1"], ali_a=["2.2.2.2"]),
            is_tty=True, open_input=fixed_input("\n"),
        )
        self.assertEqual(ep.ip, "1.1.1.1")
        self.assertEqual(renderer.of_kind(EventKind.WARN), [])

    async def test_interactive_invalid_warns(self):
        ep, renderer = await self.choose(
            lookup_handler(cf_a=["1.1.1.1"], ali_a=["2.2.2.2"]),
            is_tty=True, open_input=fixed_input("9\n"),
        )
        self.assertEqual(ep.ip, "1.1.1.1")
        self.assertIn("'9'", renderer.of_kind(EventKind.WARN)[0].value)

    async def test_interactive_eof_is_first(self):
        ep, _ = await self.choose(
            lookup_handler(cf_a=["1.1.1.1"], ali_a=["2.2.2.2"]),
            is_tty=True, open_input=fixed_input(""),
        )
        self.assertEqual(ep.ip, "1.1.1.1")

    async def test_no_terminal(self):
        def unavailable():
            raise OSError("no tty")

        ep, renderer = await self.choose(
            lookup_handler(cf_a=["1.1.1.1"], ali_a=["2.2.2.2"]),
            is_tty=True, open_input=unavailable,
        )
        self.assertEqual(ep.ip, "1.1.1.1")
        self.assertTrue(renderer.of_kind(EventKind.WARN))

    async def test_cancel_while_prompting(self):
        read_fd, write_fd = os.pipe()
        self.addCleanup(os.close, write_fd)

        def pipe_input():
            return os.fdopen(read_fd, "r"), True

        cancel = asyncio.Event()
        asyncio.get_running_loop().call_later(0.1, cancel.set)
        t0 = time.monotonic()
        ep, _ = await self.choose(
            lookup_handler(cf_a=["1.1.1.1"], ali_a=["2.2.2.2"]),
            is_tty=True, cancel=cancel, open_input=pipe_input,
        )
        self.assertEqual(ep, Endpoint())
        self.assertLess(time.monotonic() - t0, 2.0)
        # Unblock the reader thread so it can exit.
        os.write(write_fd, b"\n")

    async def test_both_timeout_uses_system_dns(self):
        with mock.patch.object(endpoint, "resolve_system", mock.AsyncMock(return_value="9.9.9.9")) as sys_dns:
            ep, renderer = await self.choose(lookup_handler(timeout=True))
        sys_dns.assert_awaited_once_with("speed.example")
        self.assertEqual(ep, Endpoint(ip="9.9.9.9", description="system DNS fallback"))
        self.assertIn("timed out", renderer.of_kind(EventKind.WARN)[0].value)

    async def test_both_timeout_system_dns_fails(self):
        with mock.patch.object(endpoint, "resolve_system", mock.AsyncMock(return_value="")):
            ep, _ = await self.choose(lookup_handler(timeout=True))
        self.assertEqual(ep, Endpoint())

    async def test_cancel_during_doh(self):
        async def stalled(request):
            await asyncio.sleep(10)
            return httpx.Response(200, text="[]")

        cancel = asyncio.Event()
        asyncio.get_running_loop().call_later(0.05, cancel.set)
        t0 = time.monotonic()
        ep, renderer = await self.choose(stalled, cancel=cancel)
        self.assertEqual(ep, Endpoint())
        self.assertLess(time.monotonic() - t0, 0.5)
        self.assertEqual(renderer.of_kind(EventKind.WARN), [])

    async def test_cancel_during_system_dns(self):
        async def stalled(host):
            await asyncio.sleep(10)
            return "9.9.9.9"

        cancel = asyncio.Event()
        asyncio.get_running_loop().call_later(0.05, cancel.set)
        t0 = time.monotonic()
        with mock.patch.object(endpoint, "resolve_system", stalled):
            ep, _ = await self.choose(lookup_handler(timeout=True), cancel=cancel)
        self.assertEqual(ep, Endpoint())
        self.assertLess(time.monotonic() - t0, 0.5)

    async def test_empty_answers_skip_system_dns(self):
        with mock.patch.object(endpoint, "resolve_system", mock.AsyncMock(return_value="9.9.9.9")) as sys_dns:
            ep, _ = await self.choose(lookup_handler())
        sys_dns.assert_not_awaited()
        self.assertEqual(ep, Endpoint())



class TestResolveSystem(unittest.IsolatedAsyncioTestCase):

    async def test_ip_literals_returned_as_is(self):
        self.assertEqual(await endpoint.resolve_system("127.0.0.1"), "127.0.0.1")
        self.assertEqual(await endpoint.resolve_system("2001:db8::1"), "2001:db8::1")

    async def test_hosts_file_name(self):
        self.assertEqual(await endpoint.resolve_system("localhost"), "127.0.0.1")

    async def test_empty_host(self):
        self.assertEqual(await endpoint.resolve_system(""), "")

    async def test_falls_back_to_dns_servers(self):
        loop = asyncio.get_running_loop()
        failing = mock.AsyncMock(side_effect=socket.gaierror("no such host"))
        answer = mock.AsyncMock(return_value=["198.51.100.4"])
        with mock.patch.object(loop, "getaddrinfo", failing), \
                mock.patch.object(endpoint.dns.asyncresolver, "resolve", answer):
            self.assertEqual(await endpoint.resolve_system("speed.example"), "198.51.100.4")
        answer.assert_awaited_once()


if __name__ == "__main__":
    unittest.main()
