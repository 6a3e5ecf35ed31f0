"""Unit tests for the event bus and renderers."""

import io
import unittest

from rich.console import Console

from inetspeed.display import (
    Bus,
    CollectingRenderer,
    Event,
    EventKind,
    PlainRenderer,
    RichRenderer,
    new_bus,
)


class TestBus(unittest.TestCase):

    def test_order_and_kinds(self):
        renderer = CollectingRenderer()
        bus = Bus(renderer)
        bus.banner("B")
        bus.header("H")
        bus.info("I")
        bus.warn("W")
        bus.kv("Key", "Value")
        bus.progress("Download", "1.0 Mbps")
        bus.result("R")
        bus.line()
        bus.fatal("F")
        kinds = [e.kind for e in renderer.events]
        self.assertEqual(kinds, [
            EventKind.BANNER, EventKind.HEADER, EventKind.INFO, EventKind.WARN, EventKind.KV,
            EventKind.PROGRESS, EventKind.RESULT, EventKind.LINE, EventKind.FATAL,
        ])
        self.assertEqual(renderer.of_kind(EventKind.KV)[0].label, "Key")
        times = [e.time for e in renderer.events]
        self.assertEqual(times, sorted(times))

    def test_send_stamps_time(self):
        renderer = CollectingRenderer()
        Bus(renderer).send(Event(EventKind.INFO, value="x", time=0.0))
        self.assertGreater(renderer.events[0].time, 0.0)

    def test_close_without_renderer_close(self):
        Bus(CollectingRenderer()).close()

    def test_new_bus(self):
        self.assertIsInstance(new_bus(False).renderer, PlainRenderer)
        self.assertIsInstance(new_bus(True).renderer, RichRenderer)


class TestPlainRenderer(unittest.TestCase):

    def test_lines(self):
        out = io.StringIO()
        bus = Bus(PlainRenderer(out))
        bus.header("Idle Latency")
        bus.info("Samples: 20")
        bus.warn("careful")
        bus.kv("Client", "1.2.3.4")
        bus.progress("Upload", "5.0 Mbps")
        bus.result("12.00 ms")
        text = out.getvalue()
        self.assertIn("  > Idle Latency\n", text)
        self.assertIn("  [+] Samples: 20\n", text)
        self.assertIn("  [!] careful\n", text)
        self.assertIn("  " + "Client:".ljust(18) + " 1.2.3.4\n", text)
        self.assertIn("  [Upload] 5.0 Mbps\n", text)
        self.assertIn("      -> 12.00 ms\n", text)


class TestRichRenderer(unittest.TestCase):

    def test_progress_then_text(self):
        out = io.StringIO()
        renderer = RichRenderer(Console(file=out, width=100, color_system=None))
        bus = Bus(renderer)
        bus.progress("Download", "10.0 Mbps")
        self.assertIsNotNone(renderer.live)
        bus.progress("Download", "20.0 Mbps")
        bus.info("done")
        self.assertIsNone(renderer.live)
        bus.result("42 Mbps")
        bus.close()
        text = out.getvalue()
        self.assertIn("[+] done", text)
        self.assertIn("42 Mbps", text)


if __name__ == "__main__":
    unittest.main()
