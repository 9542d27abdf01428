"""
UnixFS Importer

This module turns named byte payloads into UnixFS files and directories:
file content is chunked into raw leaves under a balanced tree of dag-pb
nodes, and files are linked by name from directory nodes. Layout
parameters match the defaults of the ipfs-car packer so that the same
input always yields the same root CID.
"""

import logging
import mimetypes
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple, Union

from .blockstore import Block, BlockStore
from .cid import CID, DAG_PB, RAW
from .dagpb import PBLink, PBNode, UnixFSData, UnixFSType, directory_data
from .exceptions import IPLDError

DEFAULT_CHUNK_SIZE = 1024 * 1024
MAX_CHILDREN_PER_NODE = 1024

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class File:
    """A named file payload to be imported."""

    name: str
    content: bytes
    type: Optional[str] = None

    def __post_init__(self):
        if self.type is None:
            guessed, _ = mimetypes.guess_type(self.name)
            object.__setattr__(self, "type", guessed or "application/octet-stream")

    @property
    def size(self) -> int:
        return len(self.content)

    @classmethod
    def from_path(cls, path: Union[str, Path], name: Optional[str] = None) -> 'File':
        """Read a file from disk, naming it after its basename unless told otherwise."""
        path = Path(path)
        return cls(name=name or path.name, content=path.read_bytes())


@dataclass(frozen=True)
class ImportedNode:
    """Root of an imported file or directory."""

    cid: CID
    # Cumulative size of the serialized subtree, used as the link Tsize
    cumulative_size: int
    file_size: int = 0


def import_file(content: bytes, blockstore: BlockStore,
                chunk_size: int = DEFAULT_CHUNK_SIZE,
                max_children: int = MAX_CHILDREN_PER_NODE) -> ImportedNode:
    """
    Import file content as raw leaves under a balanced dag-pb tree.

    Content that fits in a single chunk is addressed directly by its raw
    leaf CID.
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")

    chunks = [content[i:i + chunk_size] for i in range(0, len(content), chunk_size)] or [b""]

    nodes = []
    for chunk in chunks:
        cid = blockstore.put(Block.encode(chunk, RAW))
        nodes.append(ImportedNode(cid=cid, cumulative_size=len(chunk), file_size=len(chunk)))

    while len(nodes) > 1:
        parents = []
        for start in range(0, len(nodes), max_children):
            group = nodes[start:start + max_children]
            data = UnixFSData(
                type=UnixFSType.FILE,
                blocksizes=[child.file_size for child in group]
            ).marshal()
            links = tuple(
                PBLink(cid=child.cid, name="", tsize=child.cumulative_size)
                for child in group
            )
            block = Block.encode(PBNode(data=data, links=links).encode(), DAG_PB)
            blockstore.put(block)
            parents.append(ImportedNode(
                cid=block.cid,
                cumulative_size=block.size + sum(child.cumulative_size for child in group),
                file_size=sum(child.file_size for child in group)
            ))
        nodes = parents

    return nodes[0]


def make_directory_block(links: List[PBLink]) -> Block:
    """Encode a plain UnixFS directory whose entries are the given links."""
    return Block.encode(PBNode.create(directory_data(), links).encode(), DAG_PB)


def store_directory(links: List[PBLink], blockstore: BlockStore) -> ImportedNode:
    """Encode and store a directory, returning its root and cumulative size."""
    block = make_directory_block(links)
    blockstore.put(block)
    cumulative = block.size + sum(link.tsize or 0 for link in links)
    return ImportedNode(cid=block.cid, cumulative_size=cumulative)


def _split_path(name: str) -> List[str]:
    parts = [part for part in name.replace("\\", "/").split("/") if part and part != "."]
    if not parts:
        raise IPLDError(f"invalid file path: {name!r}")
    if ".." in parts:
        raise IPLDError(f"file path may not leave its directory: {name!r}")
    return parts


@dataclass
class _DirectoryTree:
    files: Dict[str, bytes] = field(default_factory=dict)
    directories: Dict[str, '_DirectoryTree'] = field(default_factory=dict)

    def add(self, parts: List[str], content: bytes, original: str) -> None:
        head, rest = parts[0], parts[1:]
        if not rest:
            if head in self.files or head in self.directories:
                raise IPLDError(f"duplicate path in directory: {original!r}")
            self.files[head] = content
            return

        if head in self.files:
            raise IPLDError(f"path conflicts with an existing file: {original!r}")
        self.directories.setdefault(head, _DirectoryTree()).add(rest, content, original)

    def store(self, blockstore: BlockStore, chunk_size: int) -> ImportedNode:
        links = []
        for name, content in self.files.items():
            node = import_file(content, blockstore, chunk_size)
            links.append(PBLink(cid=node.cid, name=name, tsize=node.cumulative_size))
        for name, subtree in self.directories.items():
            node = subtree.store(blockstore, chunk_size)
            links.append(PBLink(cid=node.cid, name=name, tsize=node.cumulative_size))
        return store_directory(links, blockstore)


def pack_files(files: Iterable[File], blockstore: BlockStore,
               wrap_with_directory: bool = True,
               chunk_size: int = DEFAULT_CHUNK_SIZE) -> CID:
    """
    Import files into the block store and return the root CID.

    With wrap_with_directory the files (which may carry nested paths such
    as ``images/1.png``) are linked from a directory that becomes the root.
    Without it exactly one file must be given and its own CID is returned.
    """
    files = list(files)
    if not files:
        raise IPLDError("no files to pack")

    if not wrap_with_directory:
        if len(files) != 1:
            raise IPLDError("packing several files requires wrap_with_directory")
        return import_file(files[0].content, blockstore, chunk_size).cid

    tree = _DirectoryTree()
    for f in files:
        tree.add(_split_path(f.name), f.content, f.name)

    root = tree.store(blockstore, chunk_size)
    logger.debug(f"Packed {len(files)} file(s) under {root.cid}")
    return root.cid


def list_directory(cid: CID, blockstore: BlockStore) -> List[Tuple[str, CID]]:
    """Return (name, cid) for each entry of a stored directory."""
    node = PBNode.decode(blockstore.get(cid).data)
    if node.data is None or UnixFSData.unmarshal(node.data).type != UnixFSType.DIRECTORY:
        raise IPLDError(f"{cid} is not a UnixFS directory")
    return [(link.name or "", link.cid) for link in node.links]


def read_file(cid: CID, blockstore: BlockStore) -> bytes:
    """Reassemble the content of an imported file."""
    block = blockstore.get(cid)
    if cid.codec == RAW:
        return block.data

    node = PBNode.decode(block.data)
    unixfs = UnixFSData.unmarshal(node.data or b"")
    if unixfs.type not in (UnixFSType.FILE, UnixFSType.RAW):
        raise IPLDError(f"{cid} is not a UnixFS file")
    return unixfs.data + b"".join(read_file(link.cid, blockstore) for link in node.links)


def resolve_path(root: CID, path: str, blockstore: BlockStore) -> CID:
    """Walk a slash-separated path through nested directories."""
    current = root
    for part in _split_path(path):
        entries = dict(list_directory(current, blockstore))
        if part not in entries:
            raise IPLDError(f"no entry {part!r} in directory {current}")
        current = entries[part]
    return current
