"""
Metaplex Auth - NFT Bundles

This module aggregates many packaged NFTs into one content-addressed
directory so that a whole collection can be uploaded as a single CAR.

Every entry is linked from the root directory under its id, through a
wrapper directory holding the NFT's ``assets`` and ``metadata``
directories:

    .
    ├── 0
    │   ├── assets
    │   │   └── 0.png
    │   └── metadata
    │       └── metadata.json
    └── 1
        ├── assets
        │   └── 1.png
        └── metadata
            └── metadata.json

The root must stay a simple (non-sharded) UnixFS directory, whose encoded
block is limited to 256 KiB. MAX_ENTRIES and MAX_ID_LEN are sized together
so that a full bundle of maximum-length ids always fits; changing one
means recomputing the other.
"""

import logging
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, Optional, Union

from ipld.blockstore import Block, BlockStore, MemoryBlockStore
from ipld.car import CarArchive
from ipld.cid import CID, DAG_PB, SHA2_256_LENGTH, as_cid, varint_size
from ipld.dagpb import PBLink, directory_data
from ipld.unixfs import File, make_directory_block

from .exceptions import CapacityError, DuplicateIdentifierError, InvalidIdentifierError
from .links import DEFAULT_GATEWAY_HOST
from .load import iter_files, load_nft_from_filesystem
from .metadata import MetaplexMetadata
from .prepare import EncodedCar, PackagedNFT, prepare_metaplex_nft

ROOT_BLOCK_SIZE_LIMIT = 256 * 1024
MAX_ENTRIES = 2500
MAX_ID_LEN = 48

ASSETS_LINK_NAME = "assets"
METADATA_LINK_NAME = "metadata"

# Largest Tsize we ever encode
_MAX_TSIZE = 2 ** 63 - 1


def max_link_size(id_len: int) -> int:
    """
    Upper bound on the encoded size of one root directory link.

    A link is a length-delimited PBLink holding a CIDv1 (sha2-256, dag-pb),
    the id as its name and a varint Tsize.
    """
    cid_len = varint_size(1) + varint_size(DAG_PB) + 2 + SHA2_256_LENGTH
    hash_field = 1 + varint_size(cid_len) + cid_len
    name_field = 1 + varint_size(id_len) + id_len
    tsize_field = 1 + varint_size(_MAX_TSIZE)
    link_len = hash_field + name_field + tsize_field
    return 1 + varint_size(link_len) + link_len


def max_root_block_size(entries: int = MAX_ENTRIES, id_len: int = MAX_ID_LEN) -> int:
    """Worst-case encoded size of a root directory with the given shape."""
    data = directory_data()
    data_field = 1 + varint_size(len(data)) + len(data)
    return entries * max_link_size(id_len) + data_field


def check_root_size_invariant(entries: int = MAX_ENTRIES, id_len: int = MAX_ID_LEN) -> None:
    """Raise ValueError if a full bundle could overflow the root block limit."""
    worst_case = max_root_block_size(entries, id_len)
    if worst_case >= ROOT_BLOCK_SIZE_LIMIT:
        raise ValueError(
            f"{entries} entries with {id_len}-byte ids need {worst_case} bytes, "
            f"limit is {ROOT_BLOCK_SIZE_LIMIT}"
        )


check_root_size_invariant()


def validate_identifier(id: str) -> None:
    """Check that id can name a root directory entry."""
    if not isinstance(id, str) or not id:
        raise InvalidIdentifierError("bundle ids must be non-empty strings")
    if "/" in id or id in (".", ".."):
        raise InvalidIdentifierError(f"bundle id {id!r} is not a valid directory entry name")

    id_len = len(id.encode("utf-8"))
    if id_len > MAX_ID_LEN:
        raise CapacityError(
            f"bundle id {id!r} is {id_len} bytes, the maximum is {MAX_ID_LEN}",
            limit=MAX_ID_LEN,
        )


def make_wrapper_block(nft: PackagedNFT) -> Block:
    """Directory linking an NFT's assets and metadata directories."""
    assets = nft.encoded_assets.car.get(nft.encoded_assets.cid)
    metadata = nft.encoded_metadata.car.get(nft.encoded_metadata.cid)
    return make_directory_block([
        PBLink(cid=assets.cid, name=ASSETS_LINK_NAME, tsize=assets.size),
        PBLink(cid=metadata.cid, name=METADATA_LINK_NAME, tsize=metadata.size),
    ])


class NFTBundle:
    """
    A collection of packaged NFTs sharing one block store.

    Ids must be unique within a bundle. Entries are only recorded once their
    NFT has been packaged, so a failed add leaves the bundle unchanged.
    """

    def __init__(self, blockstore: Optional[BlockStore] = None):
        self.blockstore = blockstore if blockstore is not None else MemoryBlockStore()
        self._entries: Dict[str, PackagedNFT] = {}
        self._lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, id: str) -> bool:
        return id in self._entries

    def _check_can_add(self, id: str) -> None:
        if len(self._entries) >= MAX_ENTRIES:
            raise CapacityError(
                f"unable to add more than {MAX_ENTRIES} NFTs to a bundle",
                limit=MAX_ENTRIES,
            )
        validate_identifier(id)
        if id in self._entries:
            raise DuplicateIdentifierError(id)

    def _record(self, id: str, nft: PackagedNFT) -> PackagedNFT:
        with self._lock:
            self._check_can_add(id)
            self._entries[id] = nft
        self.logger.debug(f"Added {id} to bundle ({len(self._entries)} entries)")
        return nft

    def add_nft(self, id: str, metadata: Union[Dict[str, Any], MetaplexMetadata],
                image_file: File, *,
                additional_files: Iterable[File] = (),
                gateway_host: str = DEFAULT_GATEWAY_HOST,
                validate_schema: bool = False) -> PackagedNFT:
        """
        Package an NFT and add it under id.

        Raises:
            CapacityError: If the bundle is full or id is too long
            InvalidIdentifierError: If id is empty or contains a slash
            DuplicateIdentifierError: If id is already taken
        """
        self._check_can_add(id)

        nft = prepare_metaplex_nft(
            metadata,
            image_file,
            additional_files,
            blockstore=self.blockstore,
            gateway_host=gateway_host,
            validate_schema=validate_schema,
        )
        return self._record(id, nft)

    def add_nft_from_filesystem(self, metadata_path: Union[str, Path],
                                image_path: Optional[Union[str, Path]] = None, *,
                                id: Optional[str] = None,
                                gateway_host: str = DEFAULT_GATEWAY_HOST,
                                validate_schema: bool = False) -> PackagedNFT:
        """
        Load an NFT from disk and add it.

        The id defaults to the metadata filename without its ``.json``
        extension, which suits candy-machine style directories (``0.json``,
        ``1.json``, ...).
        """
        if not id:
            name = Path(metadata_path).name
            id = name[:-len(".json")] if name.endswith(".json") else name

        self._check_can_add(id)

        nft = load_nft_from_filesystem(
            metadata_path,
            image_path,
            blockstore=self.blockstore,
            gateway_host=gateway_host,
            validate_schema=validate_schema,
        )
        return self._record(id, nft)

    def add_all_nfts_from_directory(self, path: Union[str, Path], *,
                                    gateway_host: str = DEFAULT_GATEWAY_HOST,
                                    validate_schema: bool = False) -> Iterator[PackagedNFT]:
        """Add every ``*.json`` metadata file found below path, yielding each NFT."""
        for name, file_path in iter_files(path):
            if not name.endswith(".json"):
                continue
            yield self.add_nft_from_filesystem(
                file_path,
                gateway_host=gateway_host,
                validate_schema=validate_schema,
            )

    def manifest(self) -> Dict[str, PackagedNFT]:
        """Copy of the id to PackagedNFT mapping."""
        with self._lock:
            return dict(self._entries)

    def make_root_block(self) -> Block:
        """
        Build the root directory block.

        Wrapper directories are written to the block store; the root block
        itself is returned without being stored.
        """
        links = []
        for id, nft in self.manifest().items():
            wrapper = make_wrapper_block(nft)
            self.blockstore.put(wrapper)
            links.append(PBLink(cid=wrapper.cid, name=id, tsize=wrapper.size))

        root = make_directory_block(links)
        if root.size >= ROOT_BLOCK_SIZE_LIMIT:
            raise CapacityError(
                f"bundle root block is {root.size} bytes, the limit is {ROOT_BLOCK_SIZE_LIMIT}",
                limit=ROOT_BLOCK_SIZE_LIMIT,
            )
        return root

    def as_car(self) -> EncodedCar:
        """Archive the whole bundle under its root directory."""
        root = self.make_root_block()
        self.blockstore.put(root)
        self.logger.info(f"Bundled {len(self)} NFT(s) under {root.cid}")
        return EncodedCar(cid=root.cid, car=CarArchive([root.cid], self.blockstore))

    def get_raw_size(self) -> int:
        """Total size of every block in the store."""
        return sum(block.size for block in self.blockstore.blocks())

    def get_raw_block(self, cid: Union[CID, str]) -> bytes:
        return self.blockstore.get(as_cid(cid)).data
