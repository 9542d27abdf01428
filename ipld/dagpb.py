"""
DAG-PB and UnixFS Codec

This module encodes and decodes the protobuf structures behind UnixFS
files and directories: PBNode/PBLink (the dag-pb codec) and the UnixFS
Data message carried inside a node's Data field.

References:
- DAG-PB: https://ipld.io/specs/codecs/dag-pb/spec/
- UnixFS: https://github.com/ipfs/specs/blob/main/UNIXFS.md
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Iterator, List, Optional, Tuple

from .cid import CID, decode_varint, encode_varint
from .exceptions import CodecError, InvalidCIDError


# Protobuf wire types
WIRE_VARINT = 0
WIRE_LENGTH_DELIMITED = 2


def _key(field_number: int, wire_type: int) -> bytes:
    return encode_varint((field_number << 3) | wire_type)


def _length_delimited(field_number: int, payload: bytes) -> bytes:
    return _key(field_number, WIRE_LENGTH_DELIMITED) + encode_varint(len(payload)) + payload


def _iter_fields(data: bytes) -> Iterator[Tuple[int, int, object]]:
    """Yield (field number, wire type, value) for each field of a message."""
    position = 0
    while position < len(data):
        try:
            key, position = decode_varint(data, position)
            field_number, wire_type = key >> 3, key & 0x07

            if wire_type == WIRE_VARINT:
                value, position = decode_varint(data, position)
            elif wire_type == WIRE_LENGTH_DELIMITED:
                length, position = decode_varint(data, position)
                end = position + length
                if end > len(data):
                    raise CodecError("truncated length-delimited field")
                value = bytes(data[position:end])
                position = end
            else:
                raise CodecError(f"unsupported protobuf wire type {wire_type}")
        except ValueError as e:
            raise CodecError(f"malformed protobuf: {e}") from e

        yield field_number, wire_type, value


@dataclass(frozen=True)
class PBLink:
    """Named link from a dag-pb node to another block."""

    cid: CID
    name: Optional[str] = None
    tsize: Optional[int] = None

    def encode(self) -> bytes:
        out = _length_delimited(1, self.cid.bytes)
        if self.name is not None:
            out += _length_delimited(2, self.name.encode("utf-8"))
        if self.tsize is not None:
            out += _key(3, WIRE_VARINT) + encode_varint(self.tsize)
        return out

    @classmethod
    def decode(cls, data: bytes) -> 'PBLink':
        cid = None
        name = None
        tsize = None

        for number, wire_type, value in _iter_fields(data):
            if number == 1 and wire_type == WIRE_LENGTH_DELIMITED:
                try:
                    cid = CID.decode(value)
                except InvalidCIDError as e:
                    raise CodecError(f"invalid link hash: {e}") from e
            elif number == 2 and wire_type == WIRE_LENGTH_DELIMITED:
                name = value.decode("utf-8")
            elif number == 3 and wire_type == WIRE_VARINT:
                tsize = value
            else:
                raise CodecError(f"unexpected field {number} in PBLink")

        if cid is None:
            raise CodecError("PBLink is missing its Hash field")
        return cls(cid=cid, name=name, tsize=tsize)


def sort_links(links: List[PBLink]) -> List[PBLink]:
    """Order links by the bytes of their names, as dag-pb requires."""
    return sorted(links, key=lambda link: (link.name or "").encode("utf-8"))


@dataclass(frozen=True)
class PBNode:
    """A dag-pb node: opaque data plus an ordered list of links."""

    data: Optional[bytes] = None
    links: Tuple[PBLink, ...] = ()

    def encode(self) -> bytes:
        # Links are serialized before Data
        out = b"".join(_length_delimited(2, link.encode()) for link in self.links)
        if self.data is not None:
            out += _length_delimited(1, self.data)
        return out

    @classmethod
    def create(cls, data: Optional[bytes], links: List[PBLink]) -> 'PBNode':
        return cls(data=data, links=tuple(sort_links(links)))

    @classmethod
    def decode(cls, data: bytes) -> 'PBNode':
        links = []
        node_data = None

        for number, wire_type, value in _iter_fields(data):
            if number == 2 and wire_type == WIRE_LENGTH_DELIMITED:
                links.append(PBLink.decode(value))
            elif number == 1 and wire_type == WIRE_LENGTH_DELIMITED:
                node_data = value
            else:
                raise CodecError(f"unexpected field {number} in PBNode")

        return cls(data=node_data, links=tuple(links))


class UnixFSType(IntEnum):
    RAW = 0
    DIRECTORY = 1
    FILE = 2
    METADATA = 3
    SYMLINK = 4
    HAMT_SHARD = 5


@dataclass
class UnixFSData:
    """UnixFS Data message stored in a dag-pb node's Data field."""

    type: UnixFSType
    data: bytes = b""
    blocksizes: List[int] = field(default_factory=list)

    def file_size(self) -> int:
        return len(self.data) + sum(self.blocksizes)

    def marshal(self) -> bytes:
        out = _key(1, WIRE_VARINT) + encode_varint(int(self.type))
        if self.data:
            out += _length_delimited(2, self.data)
        if self.type in (UnixFSType.FILE, UnixFSType.RAW):
            out += _key(3, WIRE_VARINT) + encode_varint(self.file_size())
        for size in self.blocksizes:
            out += _key(4, WIRE_VARINT) + encode_varint(size)
        return out

    @classmethod
    def unmarshal(cls, data: bytes) -> 'UnixFSData':
        unixfs_type = None
        payload = b""
        blocksizes = []

        for number, wire_type, value in _iter_fields(data):
            if number == 1:
                try:
                    unixfs_type = UnixFSType(value)
                except ValueError as e:
                    raise CodecError(f"unknown UnixFS type {value}") from e
            elif number == 2:
                payload = value
            elif number == 4:
                blocksizes.append(value)
            # filesize, hashType, fanout, mode and mtime are derived or unused

        if unixfs_type is None:
            raise CodecError("UnixFS data is missing its Type field")
        return cls(type=unixfs_type, data=payload, blocksizes=blocksizes)


def directory_data() -> bytes:
    """Marshalled UnixFS Data for a plain (non-sharded) directory."""
    return UnixFSData(type=UnixFSType.DIRECTORY).marshal()
