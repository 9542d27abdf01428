"""
Content Archives (CAR v1)

This module serializes blocks from a block store into CAR v1 archives and
parses archives back into blocks. A CAR is the unit of network transfer:
a dag-cbor header naming the root CIDs followed by length-prefixed
(CID, bytes) sections.

References:
- CARv1: https://ipld.io/specs/transport/car/carv1/
"""

from typing import BinaryIO, Callable, Iterable, Iterator, List, Optional, Sequence, Tuple

import cbor2

from .blockstore import CID_CBOR_TAG, Block, BlockStore, MemoryBlockStore
from .cid import CID, decode_varint, encode_varint
from .exceptions import CarFormatError, InvalidCIDError

CAR_VERSION = 1
CAR_CONTENT_TYPE = "application/car"


def encode_car_header(roots: Sequence[CID]) -> bytes:
    """Encode the varint-prefixed dag-cbor CAR header."""
    header = cbor2.dumps({
        "roots": [cbor2.CBORTag(CID_CBOR_TAG, b"\x00" + cid.bytes) for cid in roots],
        "version": CAR_VERSION,
    })
    return encode_varint(len(header)) + header


def encode_block_section(block: Block) -> bytes:
    """Encode one varint-prefixed (CID, data) section."""
    payload = block.cid.bytes + block.data
    return encode_varint(len(payload)) + payload


def decode_car_header(data: bytes, offset: int = 0) -> Tuple[List[CID], int]:
    """
    Decode a CAR header.

    Returns:
        Tuple of (root CIDs, offset of the first block section)
    """
    try:
        length, position = decode_varint(data, offset)
    except ValueError as e:
        raise CarFormatError(f"invalid CAR header length: {e}") from e

    end = position + length
    if length == 0 or end > len(data):
        raise CarFormatError("truncated CAR header")

    try:
        header = cbor2.loads(data[position:end])
    except cbor2.CBORDecodeError as e:
        raise CarFormatError(f"invalid CAR header: {e}") from e

    if not isinstance(header, dict) or header.get("version") != CAR_VERSION:
        raise CarFormatError(f"unsupported CAR header: {header!r}")

    roots = []
    for tag in header.get("roots") or []:
        if not isinstance(tag, cbor2.CBORTag) or tag.tag != CID_CBOR_TAG or not tag.value:
            raise CarFormatError(f"invalid root in CAR header: {tag!r}")
        try:
            roots.append(CID.decode(tag.value[1:]))
        except InvalidCIDError as e:
            raise CarFormatError(f"invalid root CID in CAR header: {e}") from e

    return roots, end


def iter_car_blocks(data: bytes, offset: int, verify: bool = True) -> Iterator[Block]:
    """Yield the blocks of the CAR sections starting at offset."""
    position = offset
    while position < len(data):
        try:
            length, position = decode_varint(data, position)
        except ValueError as e:
            raise CarFormatError(f"invalid section length: {e}") from e

        end = position + length
        if end > len(data):
            raise CarFormatError("truncated CAR section")

        try:
            cid, data_start = CID.decode_from(data, position)
        except InvalidCIDError as e:
            raise CarFormatError(f"invalid section CID: {e}") from e

        block = Block(cid=cid, data=bytes(data[data_start:end]))
        if verify and not cid.verify(block.data):
            raise CarFormatError(f"block data does not match CID {cid}")

        yield block
        position = end


def iter_dag(roots: Iterable[CID], get: Callable[[CID], Block]) -> Iterator[Block]:
    """
    Walk the DAG below roots depth-first, yielding each block once.

    Blocks come out in pre-order: a node before its children, children
    in link order.
    """
    seen = set()
    stack = list(reversed(list(roots)))

    while stack:
        cid = stack.pop()
        if cid in seen:
            continue
        seen.add(cid)

        block = get(cid)
        yield block
        stack.extend(reversed(block.links()))


class CarArchive:
    """
    A CAR archive backed by a block store.

    Without an explicit block order the archive holds exactly the blocks
    reachable from its roots, in depth-first order. Archives read from
    bytes keep the order found in the input.
    """

    def __init__(self, roots: Sequence[CID], blockstore: BlockStore,
                 order: Optional[Sequence[CID]] = None):
        if not roots:
            raise CarFormatError("a CAR archive needs at least one root")
        self.roots = list(roots)
        self.blockstore = blockstore
        self._order = list(order) if order is not None else None

    @property
    def order(self) -> Optional[List[CID]]:
        """Explicit block order, or None when the archive follows its DAG."""
        return list(self._order) if self._order is not None else None

    @property
    def root(self) -> CID:
        if len(self.roots) != 1:
            raise CarFormatError(f"expected a single root, archive has {len(self.roots)}")
        return self.roots[0]

    def get(self, cid: CID) -> Block:
        return self.blockstore.get(cid)

    def has(self, cid: CID) -> bool:
        return self.blockstore.has(cid)

    def blocks(self) -> Iterator[Block]:
        if self._order is not None:
            for cid in self._order:
                yield self.blockstore.get(cid)
        else:
            yield from iter_dag(self.roots, self.blockstore.get)

    def iter_bytes(self) -> Iterator[bytes]:
        yield encode_car_header(self.roots)
        for block in self.blocks():
            yield encode_block_section(block)

    def to_bytes(self) -> bytes:
        return b"".join(self.iter_bytes())

    def write_to(self, fp: BinaryIO) -> int:
        written = 0
        for part in self.iter_bytes():
            fp.write(part)
            written += len(part)
        return written

    def raw_size(self) -> int:
        """Total size of the block payloads, excluding CAR framing."""
        return sum(block.size for block in self.blocks())


def read_car(data: bytes, verify: bool = True) -> CarArchive:
    """Parse CAR bytes into an archive backed by a fresh memory block store."""
    roots, offset = decode_car_header(data)
    blockstore = MemoryBlockStore()
    order = []

    for block in iter_car_blocks(data, offset, verify):
        if not blockstore.has(block.cid):
            order.append(block.cid)
        blockstore.put(block)

    return CarArchive(roots, blockstore, order=order)
