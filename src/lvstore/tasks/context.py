"""Per-node environment handed to every task runner."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from pathlib import Path

from lvstore.core.repository import MetadataRepository
from lvstore.core.settings import LVStoreSettings, get_settings
from lvstore.storage.transport import DataTransport


@dataclass
class DataEngineContext:
    """What a task runner may touch: its node's directories, the repository, the transport.

    Attributes:
        node_id: Id of the node the runner executes on
        root_dir: Permanent column files of this node
        tmp_dir: Scratch space of this node (fragments, manifests, merges)
        repository: Shared metadata repository
        transport: Access to other nodes' files
        settings: Tunables (cancellation granularity, value index stride)
    """

    node_id: int
    root_dir: Path
    tmp_dir: Path
    repository: MetadataRepository
    transport: DataTransport
    settings: LVStoreSettings = field(default_factory=get_settings)

    def __post_init__(self) -> None:
        self.root_dir = Path(self.root_dir)
        self.tmp_dir = Path(self.tmp_dir)
        self.root_dir.mkdir(parents=True, exist_ok=True)
        self.tmp_dir.mkdir(parents=True, exist_ok=True)

    def new_tmp_folder(self, prefix: str) -> Path:
        """Create and return a fresh, uniquely named folder under ``tmp_dir``."""
        while True:
            folder = self.tmp_dir / f"{prefix}_{uuid.uuid4().hex[:12]}"
            try:
                folder.mkdir(parents=True)
                return folder
            except FileExistsError:
                continue

    def tmp_relative(self, path: Path) -> str:
        return str(Path(path).relative_to(self.tmp_dir))


__all__ = ["DataEngineContext"]
