"""
Block Storage

This module provides the Block value type and block stores keyed by CID.
Every packaging step writes into a block store; writes are idempotent and
safe to perform from several threads at once.
"""

import logging
import os
import shutil
import tempfile
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Union

import cbor2

from .cid import CID, DAG_CBOR, DAG_PB, RAW
from .dagpb import PBNode
from .exceptions import BlockNotFoundError, CodecError

# dag-cbor tag marking an embedded CID
CID_CBOR_TAG = 42


@dataclass(frozen=True)
class Block:
    """An immutable byte payload together with its CID."""

    cid: CID
    data: bytes

    @classmethod
    def encode(cls, data: bytes, codec: int = RAW) -> 'Block':
        """Address data with a CIDv1 of the given codec."""
        return cls(cid=CID.from_data(data, codec), data=bytes(data))

    @property
    def size(self) -> int:
        return len(self.data)

    def links(self) -> List[CID]:
        """CIDs this block links to, in encoded order."""
        if self.cid.codec == DAG_PB:
            return [link.cid for link in PBNode.decode(self.data).links]
        if self.cid.codec == DAG_CBOR:
            return _cbor_links(self.data)
        return []


def _cbor_links(data: bytes) -> List[CID]:
    found = []

    # cbor2 5.x calls tag_hook(decoder, tag); 6.x calls tag_hook(tag, immutable)
    def tag_hook(*args):
        tag = next(arg for arg in args if isinstance(arg, cbor2.CBORTag))
        if tag.tag != CID_CBOR_TAG:
            return tag
        # Binary CIDs in dag-cbor carry a leading multibase identity byte
        cid = CID.decode(tag.value[1:])
        found.append(cid)
        return cid

    try:
        cbor2.loads(data, tag_hook=tag_hook)
    except cbor2.CBORDecodeError as e:
        raise CodecError(f"invalid dag-cbor block: {e}") from e
    return found


class BlockStore(ABC):
    """Abstract base class for content-addressed block stores."""

    @abstractmethod
    def put(self, block: Block) -> CID:
        """Store a block. Storing an existing CID again is a no-op."""
        pass

    @abstractmethod
    def get(self, cid: CID) -> Block:
        """Retrieve a block, raising BlockNotFoundError when absent."""
        pass

    @abstractmethod
    def has(self, cid: CID) -> bool:
        pass

    @abstractmethod
    def blocks(self) -> Iterator[Block]:
        """Iterate over every stored block."""
        pass

    def put_bytes(self, data: bytes, codec: int = RAW) -> CID:
        """Encode data as a block, store it and return its CID."""
        return self.put(Block.encode(data, codec))

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class MemoryBlockStore(BlockStore):
    """In-memory block store."""

    def __init__(self):
        self._blocks: Dict[CID, bytes] = {}
        self._lock = threading.Lock()

    def put(self, block: Block) -> CID:
        with self._lock:
            self._blocks.setdefault(block.cid, block.data)
        return block.cid

    def get(self, cid: CID) -> Block:
        with self._lock:
            data = self._blocks.get(cid)
        if data is None:
            raise BlockNotFoundError(cid)
        return Block(cid=cid, data=data)

    def has(self, cid: CID) -> bool:
        with self._lock:
            return cid in self._blocks

    def blocks(self) -> Iterator[Block]:
        with self._lock:
            items = list(self._blocks.items())
        for cid, data in items:
            yield Block(cid=cid, data=data)

    def __len__(self) -> int:
        with self._lock:
            return len(self._blocks)


class FsBlockStore(BlockStore):
    """
    Filesystem block store, one file per block named by CID.

    When no directory is given a temporary one is created and removed
    again by close().
    """

    def __init__(self, base_path: Optional[Union[str, Path]] = None):
        self._owns_directory = base_path is None
        if base_path is None:
            base_path = tempfile.mkdtemp(prefix="blockstore-")
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.logger = logging.getLogger(__name__)

    def _path_for(self, cid: CID) -> Path:
        return self.base_path / str(cid)

    def put(self, block: Block) -> CID:
        path = self._path_for(block.cid)
        if path.exists():
            return block.cid

        # Write-then-rename so concurrent writers of one CID never see a partial file
        fd, tmp_path = tempfile.mkstemp(dir=self.base_path, prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(block.data)
            os.replace(tmp_path, path)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
        return block.cid

    def get(self, cid: CID) -> Block:
        path = self._path_for(cid)
        try:
            data = path.read_bytes()
        except FileNotFoundError:
            raise BlockNotFoundError(cid)
        return Block(cid=cid, data=data)

    def has(self, cid: CID) -> bool:
        return self._path_for(cid).exists()

    def blocks(self) -> Iterator[Block]:
        for path in sorted(self.base_path.iterdir()):
            if path.name.startswith(".tmp-"):
                continue
            yield Block(cid=CID.parse(path.name), data=path.read_bytes())

    def close(self) -> None:
        if self._owns_directory and self.base_path.exists():
            shutil.rmtree(self.base_path)
            self.logger.debug(f"Removed temporary block store at {self.base_path}")
