"""
Content Addressing Primitives

This package provides CIDs, the dag-pb/UnixFS codec, block stores, the
UnixFS importer and CAR archives used to package NFT content.
"""

from .cid import CID, DAG_CBOR, DAG_PB, RAW, as_cid, decode_varint, encode_varint
from .dagpb import PBLink, PBNode, UnixFSData, UnixFSType
from .blockstore import Block, BlockStore, FsBlockStore, MemoryBlockStore
from .unixfs import File, ImportedNode, import_file, make_directory_block, pack_files
from .car import CAR_CONTENT_TYPE, CarArchive, encode_car_header, iter_dag, read_car
from .exceptions import (
    IPLDError,
    InvalidCIDError,
    CodecError,
    BlockNotFoundError,
    CarFormatError,
)

__all__ = [
    # Identifiers
    "CID",
    "RAW",
    "DAG_PB",
    "DAG_CBOR",
    "as_cid",
    "encode_varint",
    "decode_varint",

    # Codecs
    "PBLink",
    "PBNode",
    "UnixFSData",
    "UnixFSType",

    # Storage
    "Block",
    "BlockStore",
    "MemoryBlockStore",
    "FsBlockStore",

    # Importing
    "File",
    "ImportedNode",
    "import_file",
    "make_directory_block",
    "pack_files",

    # Archives
    "CAR_CONTENT_TYPE",
    "CarArchive",
    "encode_car_header",
    "iter_dag",
    "read_car",

    # Exceptions
    "IPLDError",
    "InvalidCIDError",
    "CodecError",
    "BlockNotFoundError",
    "CarFormatError",
]
