"""
CAR Splitting

This module splits a CAR archive into a sequence of smaller CARs that can
be uploaded independently. The split walks the DAG depth-first; every
chunk is rooted at the original root and repeats the ancestors of its
first new block, so each chunk is a valid partial DAG on its own.

Dropping the repeated blocks and concatenating what is left, in emission
order, reproduces the original depth-first archive exactly. Archives read
from bytes whose blocks are not in that order, or that hold blocks the
roots do not reach, are cut along their own block order instead.
"""

import logging
from typing import Iterable, Iterator, List, Set

from ipld.blockstore import Block
from ipld.car import (
    CarArchive,
    decode_car_header,
    encode_block_section,
    encode_car_header,
    iter_car_blocks,
    iter_dag,
)
from ipld.cid import CID
from ipld.exceptions import BlockNotFoundError, CarFormatError

MAX_CHUNK_SIZE = 10 * 1024 * 1024


class TreewalkCarSplitter:
    """
    Split a CAR into chunks of roughly chunk_size bytes along a tree walk.

    A chunk only exceeds chunk_size when a single block, together with the
    ancestors it must carry, is larger than that.
    """

    def __init__(self, car: CarArchive, chunk_size: int = MAX_CHUNK_SIZE):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.car = car
        self.chunk_size = chunk_size
        self.logger = logging.getLogger(__name__)

    def chunks(self) -> Iterator[List[Block]]:
        """Yield the blocks of each chunk in emission order."""
        if self._follows_tree_walk():
            return self._tree_chunks()
        self.logger.debug(
            f"CAR rooted at {self.car.roots[0]} is not in tree-walk order, "
            f"splitting along its block order"
        )
        return self._ordered_chunks()

    def _follows_tree_walk(self) -> bool:
        order = self.car.order
        if order is None:
            return True
        try:
            walked = [block.cid for block in iter_dag(self.car.roots, self.car.get)]
        except BlockNotFoundError:
            return False
        return walked == order

    def _ordered_chunks(self) -> Iterator[List[Block]]:
        header_size = len(encode_car_header(self.car.roots))
        current: List[Block] = []
        current_size = header_size

        for block in self.car.blocks():
            section_size = len(encode_block_section(block))
            if current and current_size + section_size > self.chunk_size:
                yield current
                current = []
                current_size = header_size

            current.append(block)
            current_size += section_size

        if current:
            yield current
        else:
            raise CarFormatError(f"CAR rooted at {self.car.roots[0]} holds no blocks")

    def _tree_chunks(self) -> Iterator[List[Block]]:
        header_size = len(encode_car_header(self.car.roots))
        seen: Set[CID] = set()
        path: List[Block] = []

        current: List[Block] = []
        current_size = header_size
        has_new = False

        stack = [(cid, 0) for cid in reversed(self.car.roots)]
        while stack:
            cid, depth = stack.pop()
            if cid in seen:
                continue
            seen.add(cid)

            block = self.car.get(cid)
            del path[depth:]
            section_size = len(encode_block_section(block))

            if has_new and current_size + section_size > self.chunk_size:
                yield current
                current = list(path)
                current_size = header_size + sum(len(encode_block_section(b)) for b in path)
                has_new = False

            current.append(block)
            current_size += section_size
            has_new = True

            path.append(block)
            stack.extend((link, depth + 1) for link in reversed(block.links()))

        if has_new:
            yield current

    def cars(self) -> Iterator[bytes]:
        """Yield each chunk as serialized CAR bytes."""
        count = 0
        for blocks in self.chunks():
            count += 1
            yield b"".join([encode_car_header(self.car.roots)] + [encode_block_section(b) for b in blocks])
        self.logger.debug(f"Split CAR rooted at {self.car.roots[0]} into {count} chunk(s)")


def split_car(car: CarArchive, chunk_size: int = MAX_CHUNK_SIZE) -> List[bytes]:
    return list(TreewalkCarSplitter(car, chunk_size).cars())


def join_car_chunks(chunks: Iterable[bytes]) -> bytes:
    """
    Reassemble chunks produced by TreewalkCarSplitter into a single CAR.

    Blocks repeated across chunks are kept at their first position.
    """
    roots = None
    seen: Set[CID] = set()
    sections = []

    for chunk in chunks:
        chunk_roots, offset = decode_car_header(chunk)
        if roots is None:
            roots = chunk_roots
        elif chunk_roots != roots:
            raise CarFormatError("chunks do not share the same roots")

        for block in iter_car_blocks(chunk, offset):
            if block.cid in seen:
                continue
            seen.add(block.cid)
            sections.append(encode_block_section(block))

    if roots is None:
        raise CarFormatError("no chunks to join")

    return encode_car_header(roots) + b"".join(sections)
