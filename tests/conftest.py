"""
Pytest configuration and fixtures for Metaplex Auth tests.
"""

import json
from pathlib import Path
from unittest.mock import Mock

import pytest

from crypto.auth import AuthContext
from crypto.keys import Ed25519Keypair
from ipld.blockstore import MemoryBlockStore
from ipld.car import decode_car_header
from ipld.unixfs import File

# Smallest valid PNG (1x1 transparent pixel)
PNG_BYTES = bytes.fromhex(
    "89504e470d0a1a0a0000000d4948445200000001000000010806000000"
    "1f15c4890000000d49444154789c6360000002000154a24f5d0000000049454e44ae426082"
)

TEST_SEED = bytes(range(32))


@pytest.fixture
def keypair():
    """Deterministic Ed25519 keypair."""
    return Ed25519Keypair(TEST_SEED)


@pytest.fixture
def auth_context(keypair):
    """Auth context signing with the test keypair."""
    return AuthContext.with_signer(
        keypair.sign,
        keypair.public_key,
        minting_agent="metaplex-auth/tests",
        solana_cluster="devnet",
        agent_version="1.0.0",
    )


@pytest.fixture
def blockstore():
    return MemoryBlockStore()


@pytest.fixture
def png_bytes():
    return PNG_BYTES


@pytest.fixture
def image_file():
    return File(name="token.png", content=PNG_BYTES)


@pytest.fixture
def sample_metadata():
    """Metadata record in the shape candy machine tooling produces."""
    return {
        "name": "Test Token #0",
        "symbol": "TEST",
        "description": "A token used in tests",
        "seller_fee_basis_points": 500,
        "image": "token.png",
        "attributes": [
            {"trait_type": "Background", "value": "Blue"},
            {"trait_type": "Level", "value": 3},
        ],
        "properties": {
            "files": [{"uri": "token.png", "type": "image/png"}],
            "category": "image",
            "creators": [
                {"address": "8JwVhDWkMSV3LKpyd7xWEQbsYcmJ6eM2r7YxuL4AZqGj", "share": 100}
            ],
        },
        "collection": {"name": "Test Collection", "family": "Tests"},
    }


def write_nft(directory: Path, id: str, metadata: dict, image: bytes = PNG_BYTES) -> Path:
    """Write ``{id}.json`` and ``{id}.png`` into directory, returning the JSON path."""
    directory.mkdir(parents=True, exist_ok=True)
    record = dict(metadata, name=f"Test Token #{id}", image=f"{id}.png")
    record["properties"] = dict(
        metadata["properties"],
        files=[{"uri": f"{id}.png", "type": "image/png"}],
    )
    (directory / f"{id}.png").write_bytes(image + id.encode("utf-8"))
    metadata_path = directory / f"{id}.json"
    metadata_path.write_text(json.dumps(record), encoding="utf-8")
    return metadata_path


@pytest.fixture
def nft_directory(tmp_path, sample_metadata):
    """Candy machine style directory holding three NFTs."""
    directory = tmp_path / "assets"
    for id in ("0", "1", "2"):
        write_nft(directory, id, sample_metadata)
    return directory


def make_response(status_code: int, body):
    response = Mock()
    response.status_code = status_code
    response.json.return_value = body
    return response


def echo_root_response(url, data=None, headers=None, timeout=None):
    """Fake nft.storage reply reporting the root of the posted CAR."""
    roots, _ = decode_car_header(data)
    return make_response(200, {"ok": True, "value": {"cid": str(roots[0])}})


@pytest.fixture
def mock_session():
    """HTTP session whose post() accepts every CAR."""
    session = Mock()
    session.post.side_effect = echo_root_response
    return session


@pytest.fixture
def nft_writer(sample_metadata):
    """Write an NFT's metadata and image files: nft_writer(directory, id)."""
    def write(directory: Path, id: str, **changes) -> Path:
        return write_nft(directory, id, dict(sample_metadata, **changes))
    return write


@pytest.fixture
def response_factory():
    return make_response
