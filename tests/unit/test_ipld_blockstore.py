"""
Tests for Block Storage
"""

import threading

import cbor2
import pytest

from ipld.blockstore import CID_CBOR_TAG, Block, FsBlockStore, MemoryBlockStore
from ipld.cid import CID, DAG_CBOR, RAW
from ipld.exceptions import BlockNotFoundError
from ipld.unixfs import File, pack_files


@pytest.fixture(params=["memory", "fs"])
def any_blockstore(request, tmp_path):
    if request.param == "memory":
        store = MemoryBlockStore()
    else:
        store = FsBlockStore(tmp_path / "blocks")
    yield store
    store.close()


class TestBlock:
    """Test the Block value type."""

    def test_encode(self):
        block = Block.encode(b"payload")
        assert block.cid == CID.from_data(b"payload", RAW)
        assert block.size == 7
        assert block.links() == []

    def test_dag_pb_links(self, blockstore):
        root = pack_files([File("a.txt", b"a"), File("b.txt", b"b")], blockstore)
        links = blockstore.get(root).links()
        assert links == [CID.from_data(b"a"), CID.from_data(b"b")]

    def test_dag_cbor_links(self):
        target = CID.from_data(b"target")
        data = cbor2.dumps({"link": cbor2.CBORTag(CID_CBOR_TAG, b"\x00" + target.bytes), "n": 1})
        block = Block.encode(data, DAG_CBOR)
        assert block.links() == [target]

    def test_dag_cbor_nested_links_and_other_tags(self):
        first = CID.from_data(b"first")
        second = CID.from_data(b"second")
        data = cbor2.dumps({
            "files": [cbor2.CBORTag(CID_CBOR_TAG, b"\x00" + first.bytes)],
            "when": cbor2.CBORTag(1, 1700000000),
            "meta": {"image": cbor2.CBORTag(CID_CBOR_TAG, b"\x00" + second.bytes)},
        })
        assert Block.encode(data, DAG_CBOR).links() == [first, second]


class TestBlockStores:
    """Behaviour shared by every block store."""

    def test_put_and_get(self, any_blockstore):
        cid = any_blockstore.put_bytes(b"hello")
        assert any_blockstore.has(cid)
        assert any_blockstore.get(cid).data == b"hello"

    def test_put_is_idempotent(self, any_blockstore):
        first = any_blockstore.put(Block.encode(b"hello"))
        second = any_blockstore.put(Block.encode(b"hello"))
        assert first == second
        assert len(list(any_blockstore.blocks())) == 1

    def test_missing_block(self, any_blockstore):
        cid = CID.from_data(b"absent")
        assert not any_blockstore.has(cid)
        with pytest.raises(BlockNotFoundError) as exc_info:
            any_blockstore.get(cid)
        assert exc_info.value.cid == cid

    def test_blocks_iterates_everything(self, any_blockstore):
        cids = {any_blockstore.put_bytes(bytes([i])) for i in range(10)}
        assert {block.cid for block in any_blockstore.blocks()} == cids

    def test_concurrent_puts(self, any_blockstore):
        def worker(offset):
            for i in range(50):
                any_blockstore.put_bytes(f"block-{(offset + i) % 60}".encode())

        threads = [threading.Thread(target=worker, args=(n * 10,)) for n in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(list(any_blockstore.blocks())) == 60


class TestFsBlockStore:
    """Test filesystem specific behaviour."""

    def test_explicit_directory_is_kept(self, tmp_path):
        path = tmp_path / "blocks"
        with FsBlockStore(path) as store:
            cid = store.put_bytes(b"persisted")

        assert path.exists()
        assert FsBlockStore(path).get(cid).data == b"persisted"

    def test_temporary_directory_is_removed(self):
        store = FsBlockStore()
        store.put_bytes(b"temporary")
        base_path = store.base_path
        assert base_path.exists()

        store.close()
        assert not base_path.exists()
