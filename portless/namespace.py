"""
Per-namespace proxy port records.

A proxy started under a namespace writes ``.portless/<namespace>.json``
holding ``{"port": ..., "pid": ...}`` and removes it on shutdown. The
launcher reads the file to find which port the proxy listens on.
"""

import json
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path

from .errors import NamespaceNotFound

logger = logging.getLogger("portless.namespace")

PORT_DIR_NAME = ".portless"


@dataclass(frozen=True)
class NamespacePortRecord:
    port: int
    pid: int


def get_port_dir(base: Path | None = None) -> Path:
    """Get the directory holding namespace port files"""
    return Path(base or Path.cwd()) / PORT_DIR_NAME


class NamespaceRegistry:
    """Reads and writes namespace port files under one directory"""

    def __init__(self, port_dir: Path | None = None):
        self.port_dir = Path(port_dir) if port_dir else get_port_dir()

    def path_for(self, namespace: str) -> Path:
        if not namespace or any(sep in namespace for sep in ("/", "\\")) or namespace in (".", ".."):
            raise ValueError(f"Invalid namespace: {namespace!r}")
        return self.port_dir / f"{namespace}.json"

    def persist(self, namespace: str, port: int, pid: int | None = None) -> Path:
        """Write the record atomically (temp file + rename)"""
        path = self.path_for(namespace)
        self.port_dir.mkdir(parents=True, exist_ok=True)
        record = {"port": port, "pid": pid if pid is not None else os.getpid()}

        tmp = path.with_name(f".{path.name}.{os.getpid()}.tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(record, f)
        if sys.platform != "win32":
            tmp.chmod(0o600)
        tmp.replace(path)
        logger.debug("Wrote namespace port file %s (port %d)", path, port)
        return path

    def read(self, namespace: str) -> NamespacePortRecord:
        try:
            path = self.path_for(namespace)
            data = json.loads(path.read_text(encoding="utf-8"))
            port = data["port"]
            pid = data.get("pid", 0)
            if not isinstance(port, int) or isinstance(port, bool) or not 0 < port < 65536:
                raise ValueError(f"bad port {port!r}")
            return NamespacePortRecord(port=port, pid=int(pid))
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as exc:
            logger.debug("Cannot read namespace file for %s: %s", namespace, exc)
            raise NamespaceNotFound(namespace) from exc

    def remove(self, namespace: str) -> bool:
        """Delete the record; a missing file is not an error"""
        path = self.path_for(namespace)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        logger.debug("Removed namespace port file %s", path)
        return True
