import io
import json
import os
import signal
import sys
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path
from unittest.mock import patch

import httpx

from portless.config import parse_config
from portless.errors import NamespaceNotFound, ProxyUnreachable, UnknownService
from portless.launcher import Launcher, not_running_message, proxy_command
from portless.namespace import NamespaceRegistry


class FakeProxy:
    """Sync MockTransport handler speaking the control protocol."""

    def __init__(self):
        self.routes = {}
        self.down = False
        self.calls = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append((request.method, request.url.path))
        if self.down:
            raise httpx.ConnectError("Connection refused")
        if request.url.path == "/_routes":
            return httpx.Response(200, json=self.routes)
        data = json.loads(request.content)
        if request.url.path == "/_register":
            self.routes[data["name"]] = f"http://127.0.0.1:{data['port']}"
        elif request.url.path == "/_unregister":
            self.routes.pop(data["name"], None)
        return httpx.Response(200, text="ok")


class FakeChild:
    _next_pid = 50000

    def __init__(self, *args, **kwargs):
        FakeChild._next_pid += 1
        self.pid = FakeChild._next_pid
        self.args = args
        self.kwargs = kwargs
        self.returncode = None

    def poll(self):
        return self.returncode


CONFIG = {
    "proxyPort": 8001,
    "services": {
        "web": {
            "cwd": "./packages/web",
            "command": "npm start",
            "env": {"PORT": "{port}", "API_URL": "http://api.localhost:{proxyPort}", "NAME": "{name}"},
        },
        "api": {"cwd": "./packages/api", "command": "npm run dev"},
    },
}


class LauncherTestCase(unittest.TestCase):
    def setUp(self):
        env = patch.dict(os.environ, {}, clear=False)
        env.start()
        self.addCleanup(env.stop)
        os.environ.pop("PORTLESS_DOMAIN", None)

        self.temp_dir = tempfile.TemporaryDirectory()
        self.addCleanup(self.temp_dir.cleanup)
        self.root = Path(self.temp_dir.name)

        self.proxy = FakeProxy()
        self.config = parse_config(CONFIG, self.root / "portless.json")
        self.launcher = self.make_launcher()
        self.addCleanup(self.launcher.close)

        popen = patch("portless.launcher.subprocess.Popen", side_effect=FakeChild)
        self.popen = popen.start()
        self.addCleanup(popen.stop)

    def make_launcher(self, namespace=None):
        client = httpx.Client(transport=httpx.MockTransport(self.proxy))
        registry = NamespaceRegistry(self.root / ".portless")
        return Launcher(self.config, namespace=namespace, client=client, registry=registry)

    def capture(self, func, *args):
        out, err = io.StringIO(), io.StringIO()
        with redirect_stdout(out), redirect_stderr(err):
            result = func(*args)
        return result, out.getvalue(), err.getvalue()


class StartTests(LauncherTestCase):
    def test_start_all_registers_distinct_ports(self):
        self.launcher.resolve_proxy_port()
        _, out, _ = self.capture(self.launcher.start, self.launcher.resolve_services("all"))

        self.assertEqual(set(self.proxy.routes), {"web", "api"})
        ports = self.launcher.ports
        self.assertNotEqual(ports["web"], ports["api"])
        for name, port in ports.items():
            self.assertTrue(4000 <= port <= 4999)
            self.assertEqual(self.proxy.routes[name], f"http://127.0.0.1:{port}")

        self.assertIn(f"web.localhost:8001 -> :{ports['web']}  (npm start)", out)
        self.assertIn(f"api.localhost:8001 -> :{ports['api']}  (npm run dev)", out)
        self.assertEqual(set(self.launcher.children), {"web", "api"})

    def test_child_environment(self):
        self.capture(self.launcher.start, self.launcher.resolve_services("web"))
        port = self.launcher.ports["web"]

        child = self.launcher.children["web"]
        self.assertEqual(child.args, ("npm start",))
        self.assertTrue(child.kwargs["shell"])
        self.assertEqual(child.kwargs["cwd"], str((self.root / "packages" / "web").resolve()))
        if sys.platform != "win32":
            self.assertTrue(child.kwargs["start_new_session"])

        env = child.kwargs["env"]
        self.assertEqual(env["PORT"], str(port))
        self.assertEqual(env["API_URL"], "http://api.localhost:8001")
        self.assertEqual(env["NAME"], "web")
        self.assertEqual(env["PORTLESS_URL_WEB"], "http://web.localhost:8001")
        self.assertEqual(env["PORTLESS_URL_API"], "http://api.localhost:8001")

    def test_default_env_sets_port(self):
        self.capture(self.launcher.start, self.launcher.resolve_services("api"))
        env = self.launcher.children["api"].kwargs["env"]
        self.assertEqual(env["PORT"], str(self.launcher.ports["api"]))

    def test_unknown_service(self):
        with self.assertRaises(UnknownService) as ctx:
            self.launcher.resolve_services("db")
        self.assertEqual(ctx.exception.available, ["web", "api"])

    def test_child_exit_unregisters(self):
        self.capture(self.launcher.start, self.launcher.resolve_services("all"))
        self.launcher.children["web"].returncode = 3

        _, out, _ = self.capture(self.launcher._reap)
        self.assertIn("web exited (code 3)", out)
        self.assertEqual(set(self.proxy.routes), {"api"})
        self.assertEqual(set(self.launcher.children), {"api"})

    def test_wait_returns_when_all_children_exit(self):
        self.capture(self.launcher.start, self.launcher.resolve_services("all"))
        for child in self.launcher.children.values():
            child.returncode = 0
        self.capture(self.launcher.wait, 0)
        self.assertEqual(self.launcher.children, {})
        self.assertEqual(self.proxy.routes, {})

    def test_spawn_failure_unregisters(self):
        self.popen.side_effect = OSError("no such directory")
        _, _, err = self.capture(self.launcher.start, self.launcher.resolve_services("web"))
        self.assertIn("web failed to start", err)
        self.assertEqual(self.proxy.routes, {})
        self.assertEqual(self.launcher.children, {})

    def test_register_fails_when_proxy_down(self):
        self.proxy.down = True
        with self.assertRaises(ProxyUnreachable):
            self.launcher.register("web", 4001)

    def test_unregister_ignores_proxy_down(self):
        self.proxy.down = True
        self.launcher.unregister("web")


@unittest.skipIf(sys.platform == "win32", "process groups are POSIX only")
class ShutdownTests(LauncherTestCase):
    def test_second_shutdown_escalates(self):
        self.capture(self.launcher.start, self.launcher.resolve_services("web"))
        pid = self.launcher.children["web"].pid

        with patch("portless.launcher.os.killpg") as killpg:
            _, out, _ = self.capture(self.launcher.shutdown)
            self.assertIn("Shutting down...", out)
            killpg.assert_called_once_with(pid, signal.SIGTERM)

            self.capture(self.launcher.shutdown)
            killpg.assert_called_with(pid, signal.SIGKILL)

    def test_exited_children_are_not_signalled(self):
        self.capture(self.launcher.start, self.launcher.resolve_services("web"))
        self.launcher.children["web"].returncode = 0
        with patch("portless.launcher.os.killpg") as killpg:
            self.capture(self.launcher.shutdown)
        killpg.assert_not_called()

    def test_vanished_process_group_is_ignored(self):
        self.capture(self.launcher.start, self.launcher.resolve_services("web"))
        with patch("portless.launcher.os.killpg", side_effect=ProcessLookupError):
            self.capture(self.launcher.shutdown)


class ProxyDiscoveryTests(LauncherTestCase):
    def test_default_proxy_port(self):
        self.assertEqual(self.launcher.resolve_proxy_port(), 8001)
        self.assertEqual(self.launcher.proxy_url, "http://127.0.0.1:8001")

    def test_namespace_port_file(self):
        NamespaceRegistry(self.root / ".portless").persist("feature-x", 8042, 1234)
        launcher = self.make_launcher("feature-x")
        self.addCleanup(launcher.close)
        self.assertEqual(launcher.resolve_proxy_port(), 8042)
        self.assertEqual(launcher.proxy_url, "http://127.0.0.1:8042")

    def test_missing_namespace(self):
        launcher = self.make_launcher("ghost")
        self.addCleanup(launcher.close)
        with self.assertRaises(NamespaceNotFound):
            launcher.resolve_proxy_port()

    def test_check_proxy(self):
        self.launcher.check_proxy()
        self.proxy.down = True
        with self.assertRaises(ProxyUnreachable):
            self.launcher.check_proxy()

    def test_messages(self):
        self.assertEqual(proxy_command(None), "portless-proxy")
        self.assertEqual(proxy_command("feature-x"), "portless-proxy feature-x")
        self.assertEqual(not_running_message(None), "Proxy is not running.")
        self.assertEqual(not_running_message("x"), 'Proxy for namespace "x" is not running.')


class ListTests(LauncherTestCase):
    def test_list_empty(self):
        code, out, _ = self.capture(self.launcher.list_routes)
        self.assertEqual(code, 0)
        self.assertIn("No active services.", out)

    def test_list_routes(self):
        self.proxy.routes = {"web": "http://127.0.0.1:4001"}
        code, out, _ = self.capture(self.launcher.list_routes)
        self.assertEqual(code, 0)
        self.assertIn("web", out)
        self.assertIn("http://127.0.0.1:4001", out)

    def test_list_when_proxy_down(self):
        self.proxy.down = True
        code, out, _ = self.capture(self.launcher.list_routes)
        self.assertEqual(code, 0)
        self.assertIn("Proxy is not running. Start it first: portless-proxy", out)


if __name__ == "__main__":
    unittest.main()
