"""
Tests for the dag-pb and UnixFS codec
"""

import pytest

from ipld.cid import CID, DAG_PB
from ipld.dagpb import PBLink, PBNode, UnixFSData, UnixFSType, directory_data, sort_links
from ipld.exceptions import CodecError
from ipld.unixfs import make_directory_block

EMPTY_DIR_CIDV0 = "QmUNLLsPACCz1vLxQVkXqqLX5R1X345qqfHbsf67hvA3Nn"


class TestPBNode:
    """Test dag-pb node encoding."""

    def test_empty_directory_encoding(self):
        block = make_directory_block([])
        assert block.data == b"\x0a\x02\x08\x01"
        assert block.cid == CID.parse(EMPTY_DIR_CIDV0).to_v1()

    def test_links_encoded_before_data(self):
        child = CID.from_data(b"child")
        node = PBNode(data=b"\x08\x01", links=(PBLink(cid=child, name="a", tsize=5),))
        encoded = node.encode()
        # Field 2 (Links) key first, field 1 (Data) key last
        assert encoded[0] == 0x12
        assert encoded.endswith(b"\x0a\x02\x08\x01")

    def test_round_trip(self):
        links = [
            PBLink(cid=CID.from_data(b"b"), name="b.png", tsize=10),
            PBLink(cid=CID.from_data(b"a"), name="a.png", tsize=20),
        ]
        node = PBNode.create(directory_data(), links)
        decoded = PBNode.decode(node.encode())

        assert decoded == node
        assert [link.name for link in decoded.links] == ["a.png", "b.png"]

    def test_create_sorts_by_name_bytes(self):
        cid = CID.from_data(b"x")
        links = [PBLink(cid=cid, name=name) for name in ["b", "B", "a", "10", "9"]]
        assert [link.name for link in sort_links(links)] == ["10", "9", "B", "a", "b"]

    def test_link_without_name_or_tsize(self):
        link = PBLink(cid=CID.from_data(b"x", DAG_PB))
        assert PBLink.decode(link.encode()) == link

    def test_malformed_input(self):
        with pytest.raises(CodecError):
            PBNode.decode(b"\x12\x05\x0a")

        with pytest.raises(CodecError):
            PBNode.decode(b"\x18\x01")


class TestUnixFSData:
    """Test UnixFS Data messages."""

    def test_directory_data(self):
        assert directory_data() == b"\x08\x01"
        assert UnixFSData.unmarshal(directory_data()).type == UnixFSType.DIRECTORY

    def test_file_round_trip(self):
        data = UnixFSData(type=UnixFSType.FILE, blocksizes=[262144, 1000])
        decoded = UnixFSData.unmarshal(data.marshal())

        assert decoded.type == UnixFSType.FILE
        assert decoded.blocksizes == [262144, 1000]
        assert decoded.file_size() == 263144

    def test_missing_type(self):
        with pytest.raises(CodecError):
            UnixFSData.unmarshal(b"")

    def test_unknown_type(self):
        with pytest.raises(CodecError):
            UnixFSData.unmarshal(b"\x08\x63")
