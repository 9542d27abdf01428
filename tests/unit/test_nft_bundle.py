"""
Tests for NFT bundles

Tests capacity limits, id handling, the root directory layout and
concurrent additions.
"""

from concurrent.futures import ThreadPoolExecutor

import pytest

import nft.bundle as bundle_module
from ipld.car import read_car
from ipld.dagpb import PBNode
from ipld.unixfs import list_directory, read_file, resolve_path
from nft.bundle import (
    MAX_ENTRIES,
    MAX_ID_LEN,
    ROOT_BLOCK_SIZE_LIMIT,
    NFTBundle,
    check_root_size_invariant,
    max_link_size,
    max_root_block_size,
)
from nft.exceptions import (
    CapacityError,
    DuplicateIdentifierError,
    InvalidIdentifierError,
    MetadataValidationError,
)


class TestRootSizeInvariant:
    """Test the sizing of MAX_ENTRIES against MAX_ID_LEN."""

    def test_limits(self):
        assert MAX_ENTRIES == 2500
        assert MAX_ID_LEN == 48
        assert ROOT_BLOCK_SIZE_LIMIT == 256 * 1024

    def test_worst_case_fits(self):
        assert max_link_size(MAX_ID_LEN) == 100
        assert max_root_block_size() < ROOT_BLOCK_SIZE_LIMIT
        check_root_size_invariant()

    def test_oversized_configuration_detected(self):
        with pytest.raises(ValueError, match="limit is 262144"):
            check_root_size_invariant(entries=3000, id_len=MAX_ID_LEN)

        with pytest.raises(ValueError, match="limit is 262144"):
            check_root_size_invariant(entries=MAX_ENTRIES, id_len=64)


class TestNFTBundle:
    """Test adding NFTs to a bundle."""

    def test_add_nft(self, sample_metadata, image_file):
        bundle = NFTBundle()
        nft = bundle.add_nft("0", sample_metadata, image_file)

        assert len(bundle) == 1
        assert "0" in bundle
        assert bundle.manifest() == {"0": nft}

    def test_duplicate_id(self, sample_metadata, image_file):
        bundle = NFTBundle()
        first = bundle.add_nft("0", sample_metadata, image_file)
        snapshot = first.to_dict()
        other = dict(sample_metadata, name="Replacement")

        with pytest.raises(DuplicateIdentifierError, match="bundle already contains an entry with id '0'"):
            bundle.add_nft("0", other, image_file)
        assert len(bundle) == 1
        kept = bundle.manifest()["0"]
        assert kept == first
        assert kept.to_dict() == snapshot
        assert kept.metadata.name == "Test Token #0"

    @pytest.mark.parametrize("id", ["", "a/b", ".", ".."])
    def test_invalid_id(self, sample_metadata, image_file, id):
        with pytest.raises(InvalidIdentifierError):
            NFTBundle().add_nft(id, sample_metadata, image_file)

    def test_id_length_limit(self, sample_metadata, image_file):
        bundle = NFTBundle()
        bundle.add_nft("x" * MAX_ID_LEN, sample_metadata, image_file)

        with pytest.raises(CapacityError) as exc_info:
            bundle.add_nft("x" * (MAX_ID_LEN + 1), sample_metadata, image_file)
        assert exc_info.value.limit == MAX_ID_LEN

    def test_id_length_counts_bytes(self, sample_metadata, image_file):
        with pytest.raises(CapacityError):
            NFTBundle().add_nft("é" * 25, sample_metadata, image_file)

    def test_failed_add_leaves_bundle_unchanged(self, sample_metadata, image_file):
        bundle = NFTBundle()
        record = dict(sample_metadata)
        del record["name"]

        with pytest.raises(MetadataValidationError):
            bundle.add_nft("0", record, image_file, validate_schema=True)
        assert len(bundle) == 0

        bundle.add_nft("0", sample_metadata, image_file)
        assert len(bundle) == 1

    def test_entry_limit(self, sample_metadata, image_file, monkeypatch):
        monkeypatch.setattr(bundle_module, "MAX_ENTRIES", 3)
        bundle = NFTBundle()
        for id in ("0", "1", "2"):
            bundle.add_nft(id, sample_metadata, image_file)

        with pytest.raises(CapacityError) as exc_info:
            bundle.add_nft("3", sample_metadata, image_file)
        assert exc_info.value.limit == 3
        assert len(bundle) == 3

    def test_full_bundle_of_longest_ids(self, sample_metadata, image_file):
        bundle = NFTBundle()
        for i in range(MAX_ENTRIES):
            bundle.add_nft(f"{i:0{MAX_ID_LEN}d}", sample_metadata, image_file)

        with pytest.raises(CapacityError):
            bundle.add_nft("one-too-many", sample_metadata, image_file)

        root = bundle.make_root_block()
        assert len(PBNode.decode(root.data).links) == MAX_ENTRIES
        assert root.size < ROOT_BLOCK_SIZE_LIMIT

    def test_concurrent_adds_with_same_id(self, sample_metadata, image_file):
        bundle = NFTBundle()

        def add(_):
            try:
                bundle.add_nft("shared", sample_metadata, image_file)
                return "added"
            except DuplicateIdentifierError:
                return "duplicate"

        with ThreadPoolExecutor(max_workers=8) as executor:
            outcomes = list(executor.map(add, range(16)))

        assert outcomes.count("added") == 1
        assert outcomes.count("duplicate") == 15
        assert len(bundle) == 1

    def test_concurrent_adds_with_distinct_ids(self, sample_metadata, image_file):
        bundle = NFTBundle()

        with ThreadPoolExecutor(max_workers=8) as executor:
            list(executor.map(lambda i: bundle.add_nft(str(i), sample_metadata, image_file), range(40)))

        assert len(bundle) == 40
        assert {str(i) for i in range(40)} == set(bundle.manifest())


class TestBundleFilesystem:
    """Test loading bundle entries from disk."""

    def test_add_nft_from_filesystem_default_id(self, nft_directory):
        bundle = NFTBundle()
        bundle.add_nft_from_filesystem(nft_directory / "1.json")
        assert "1" in bundle

    def test_add_nft_from_filesystem_explicit_id(self, nft_directory):
        bundle = NFTBundle()
        bundle.add_nft_from_filesystem(nft_directory / "1.json", id="custom")
        assert list(bundle.manifest()) == ["custom"]

    def test_add_all_nfts_from_directory(self, nft_directory, nft_writer):
        nft_writer(nft_directory / "more", "3")
        bundle = NFTBundle()

        added = list(bundle.add_all_nfts_from_directory(nft_directory))
        assert len(added) == 4
        assert sorted(bundle.manifest()) == ["0", "1", "2", "3"]

    def test_add_all_is_lazy(self, nft_directory):
        bundle = NFTBundle()
        entries = bundle.add_all_nfts_from_directory(nft_directory)
        assert len(bundle) == 0

        next(entries)
        assert len(bundle) == 1


class TestBundleArchive:
    """Test the archived layout of a bundle."""

    def test_layout(self, nft_directory):
        bundle = NFTBundle()
        list(bundle.add_all_nfts_from_directory(nft_directory))
        encoded = bundle.as_car()
        store = bundle.blockstore

        assert [name for name, _ in list_directory(encoded.cid, store)] == ["0", "1", "2"]
        assert [name for name, _ in list_directory(resolve_path(encoded.cid, "0", store), store)] == [
            "assets", "metadata"
        ]

        nft = bundle.manifest()["0"]
        assert resolve_path(encoded.cid, "0/assets", store) == nft.asset_root_cid
        assert resolve_path(encoded.cid, "0/metadata", store) == nft.metadata_root_cid
        assert read_file(resolve_path(encoded.cid, "0/assets/0.png", store), store).endswith(b"0")
        assert read_file(resolve_path(encoded.cid, "0/metadata/metadata.json", store), store) == nft.metadata.encode()

    def test_car_contains_whole_dag(self, nft_directory):
        bundle = NFTBundle()
        list(bundle.add_all_nfts_from_directory(nft_directory))
        encoded = bundle.as_car()

        parsed = read_car(encoded.car.to_bytes())
        assert parsed.root == encoded.cid
        for nft in bundle.manifest().values():
            assert parsed.has(nft.asset_root_cid)
            assert parsed.has(nft.metadata_root_cid)

    def test_root_block_is_not_stored_until_archived(self, sample_metadata, image_file):
        bundle = NFTBundle()
        bundle.add_nft("0", sample_metadata, image_file)

        root = bundle.make_root_block()
        assert not bundle.blockstore.has(root.cid)

        assert bundle.as_car().cid == root.cid
        assert bundle.blockstore.has(root.cid)

    def test_root_independent_of_insertion_order(self, sample_metadata, image_file):
        first = NFTBundle()
        second = NFTBundle()
        for id in ("a", "b", "c"):
            first.add_nft(id, sample_metadata, image_file)
        for id in ("c", "a", "b"):
            second.add_nft(id, sample_metadata, image_file)

        assert first.as_car().cid == second.as_car().cid

    def test_raw_access(self, sample_metadata, image_file):
        bundle = NFTBundle()
        nft = bundle.add_nft("0", sample_metadata, image_file)
        encoded = bundle.as_car()

        assert bundle.get_raw_size() == encoded.car.raw_size()
        data = bundle.get_raw_block(str(nft.asset_root_cid))
        assert data == bundle.blockstore.get(nft.asset_root_cid).data
