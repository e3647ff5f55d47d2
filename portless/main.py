"""Main entry point for the portless launcher CLI"""

import argparse
import sys

from . import __version__
from .config import load_config, write_template
from .errors import (
    ConfigMissing,
    NamespaceNotFound,
    PortlessError,
    ProxyUnreachable,
    UnknownService,
)
from .launcher import Launcher, not_running_message, proxy_command
from .output import console, print_error, print_hint, print_info, print_success

USAGE = """\
Usage:
  portless [--ns <name>] <service>  Start a single service
  portless [--ns <name>] all        Start all services
  portless [--ns <name>] list       Show active services
  portless init                     Create a portless.json template

Options:
  --ns <name>  Run under a namespace (requires: portless-proxy <name>)
               Allows multiple branches to run side-by-side.
"""


def print_usage(launcher: Launcher) -> None:
    console.print(USAGE, markup=False)
    print_info("Available services:")
    for name, svc in launcher.config.services.items():
        print_info(f"  {name:<10} {svc.command}  ({svc.cwd})")


def handle_init() -> int:
    path = write_template()
    print_success(f"Created {path.name}, edit it to match your project.")
    return 0


def handle_start(launcher: Launcher, requested: str) -> int:
    services = launcher.resolve_services(requested)
    launcher.check_proxy()
    launcher.install_signal_handlers()
    try:
        launcher.start(services)
    except PortlessError:
        launcher.shutdown()
        launcher.wait()
        raise
    launcher.wait()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="portless",
        description="Run local services behind stable *.localhost hostnames",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=USAGE,
    )
    parser.add_argument("--version", action="version", version=f"portless {__version__}")
    parser.add_argument("--ns", dest="namespace", metavar="NAME", help="Namespace of the proxy to use")
    parser.add_argument("command", nargs="?", help="Service name, 'all', 'list' or 'init'")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Launcher CLI entry point; returns the process exit code"""
    args = build_parser().parse_args(argv)
    namespace = args.namespace

    launcher = None
    try:
        if args.command == "init":
            return handle_init()

        launcher = Launcher(load_config(), namespace=namespace)
        launcher.resolve_proxy_port()

        if not args.command:
            print_usage(launcher)
            return 0
        if args.command == "list":
            return launcher.list_routes()
        return handle_start(launcher, args.command)

    except ConfigMissing as exc:
        print_error(str(exc))
        print_hint("Run `portless init` to create one.")
        return exc.exit_code
    except NamespaceNotFound as exc:
        print_error(str(exc))
        print_hint(f"Start it first: {proxy_command(exc.namespace)}")
        return exc.exit_code
    except ProxyUnreachable as exc:
        print_error(f"{not_running_message(namespace)} Start it first:")
        print_hint(proxy_command(namespace))
        print_hint(f"({exc})")
        return exc.exit_code
    except UnknownService as exc:
        print_error(str(exc))
        print_hint(f"Available: {', '.join(exc.available)}")
        return exc.exit_code
    except PortlessError as exc:
        print_error(str(exc))
        return exc.exit_code
    finally:
        if launcher is not None:
            launcher.close()


if __name__ == "__main__":
    sys.exit(main())
