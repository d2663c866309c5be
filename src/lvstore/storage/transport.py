"""Access to files held by other storage nodes.

Tasks never open sockets themselves: they ask a :class:`DataTransport` for
a :class:`NodeConnection` to a remote node and read whole files through it.
Within one task a connection per remote node is opened at most once,
reused for every file on that node, and always released, which is what
:class:`ConnectionScope` guarantees.

:class:`LocalNodeTransport` serves clusters whose nodes share a filesystem
(one host, or network-mounted node directories). It is also what the test
suite uses.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from lvstore.core.errors import TransportError
from lvstore.core.logging import get_logger

logger = get_logger(__name__)


class FileArea(str, Enum):
    """Directory a node-relative path is resolved against."""

    ROOT = "root"  # permanent column files
    TMP = "tmp"    # fragments, manifests, merge scratch


class NodeConnection(ABC):
    """Open connection to one storage node."""

    node_id: int

    @abstractmethod
    def read_bytes(self, relative_path: str, area: FileArea = FileArea.ROOT) -> bytes:
        """Read a whole file stored on the remote node."""

    @abstractmethod
    def exists(self, relative_path: str, area: FileArea = FileArea.ROOT) -> bool:
        ...

    @abstractmethod
    def close(self) -> None:
        ...


class DataTransport(ABC):
    """Factory for node connections."""

    @abstractmethod
    def connect(self, node_id: int) -> NodeConnection:
        ...


@dataclass(frozen=True)
class NodeDirectories:
    root_dir: Path
    tmp_dir: Path

    def resolve(self, relative_path: str, area: FileArea) -> Path:
        base = self.root_dir if area == FileArea.ROOT else self.tmp_dir
        path = (base / relative_path).resolve()
        if not path.is_relative_to(base.resolve()):
            raise TransportError(f"path {relative_path!r} escapes the node {area.value} directory")
        return path


class LocalNodeConnection(NodeConnection):
    def __init__(self, transport: LocalNodeTransport, node_id: int, dirs: NodeDirectories):
        self.node_id = node_id
        self._transport = transport
        self._dirs = dirs
        self._closed = False

    def read_bytes(self, relative_path: str, area: FileArea = FileArea.ROOT) -> bytes:
        if self._closed:
            raise TransportError(f"connection to node {self.node_id} is closed")
        path = self._dirs.resolve(relative_path, area)
        try:
            return path.read_bytes()
        except OSError as exc:
            raise TransportError(
                f"node {self.node_id}: cannot read {relative_path}", cause=exc,
            ).with_context(node_id=self.node_id) from exc

    def exists(self, relative_path: str, area: FileArea = FileArea.ROOT) -> bool:
        return self._dirs.resolve(relative_path, area).exists()

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._transport._released(self.node_id)


class LocalNodeTransport(DataTransport):
    """Transport over directly reachable node directories.

    Nodes are resolved by id only; a ``RackNode.address`` is never read.

    Keeps counters of opened and released connections so callers can
    check that every connection was given back.
    """

    def __init__(self, nodes: dict[int, NodeDirectories] | None = None):
        self._nodes: dict[int, NodeDirectories] = dict(nodes or {})
        self._lock = threading.Lock()
        self.opened: dict[int, int] = {}
        self.released: dict[int, int] = {}

    @classmethod
    def for_cluster(cls, node_ids: list[int], root_dir: Path, tmp_dir: Path) -> LocalNodeTransport:
        """Single-host layout: node N keeps ``root_dir/nodeN`` and ``tmp_dir/nodeN``."""
        transport = cls()
        for node_id in node_ids:
            transport.add_node(
                node_id, Path(root_dir) / f"node{node_id}", Path(tmp_dir) / f"node{node_id}",
            )
        return transport

    def add_node(self, node_id: int, root_dir: Path, tmp_dir: Path) -> None:
        self._nodes[node_id] = NodeDirectories(Path(root_dir), Path(tmp_dir))

    def directories(self, node_id: int) -> NodeDirectories:
        try:
            return self._nodes[node_id]
        except KeyError:
            raise TransportError(f"unknown node {node_id}").with_context(node_id=node_id) from None

    def connect(self, node_id: int) -> NodeConnection:
        dirs = self.directories(node_id)
        with self._lock:
            self.opened[node_id] = self.opened.get(node_id, 0) + 1
        logger.debug("node_connection_opened", remote_node_id=node_id)
        return LocalNodeConnection(self, node_id, dirs)

    def _released(self, node_id: int) -> None:
        with self._lock:
            self.released[node_id] = self.released.get(node_id, 0) + 1
        logger.debug("node_connection_released", remote_node_id=node_id)

    @property
    def open_connections(self) -> int:
        with self._lock:
            return sum(self.opened.values()) - sum(self.released.values())


class ConnectionScope:
    """One lazily opened, reused connection per remote node.

    Usage:
        with ConnectionScope(transport) as conns:
            data = conns.get(node_id).read_bytes(path)
        # every connection released here, even on error
    """

    def __init__(self, transport: DataTransport):
        self._transport = transport
        self._connections: dict[int, NodeConnection] = {}

    def get(self, node_id: int) -> NodeConnection:
        conn = self._connections.get(node_id)
        if conn is None:
            conn = self._transport.connect(node_id)
            self._connections[node_id] = conn
        return conn

    def close(self) -> None:
        connections, self._connections = self._connections, {}
        for node_id, conn in connections.items():
            try:
                conn.close()
            except Exception:
                logger.warning("node_connection_release_failed", remote_node_id=node_id, exc_info=True)

    def __enter__(self) -> ConnectionScope:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


__all__ = [
    "FileArea",
    "NodeConnection",
    "DataTransport",
    "NodeDirectories",
    "LocalNodeConnection",
    "LocalNodeTransport",
    "ConnectionScope",
]
