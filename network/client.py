"""
Metaplex Auth - Storage Client

High-level client for storing Metaplex NFTs and arbitrary files with a
storage backend, authorized by upload tokens signed with the minter's key.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Union

from crypto.auth import AuthContext, SignMessage, SolanaCluster
from ipld.blockstore import MemoryBlockStore
from ipld.car import CarArchive
from ipld.cid import CID
from ipld.unixfs import File, pack_files
from nft.bundle import NFTBundle
from nft.links import DEFAULT_GATEWAY_HOST
from nft.load import load_nft_from_filesystem
from nft.metadata import MetaplexMetadata
from nft.prepare import PackagedNFT

from .backends import NFT_STORAGE, BackendAdapter
from .upload import Uploader, UploadFilesResult

BLOB_FILENAME = "blob"


@dataclass(frozen=True)
class StoreNFTResult:
    """Outcome of storing a packaged NFT."""

    metadata: MetaplexMetadata
    asset_root_cid: str
    metadata_root_cid: str
    metadata_gateway_url: str
    metadata_uri: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metadata": self.metadata.to_dict(),
            "asset_root_cid": self.asset_root_cid,
            "metadata_root_cid": self.metadata_root_cid,
            "metadata_gateway_url": self.metadata_gateway_url,
            "metadata_uri": self.metadata_uri,
        }


class MetaplexStorageClient:
    """
    Stores CARs, files and NFTs with a storage backend.

    Every store operation issues a fresh upload token for the content it
    stores. Upload options (max_retries, on_stored_chunk, max_concurrency,
    cancel_event) are passed through to Uploader.upload_car().
    """

    def __init__(self, auth: AuthContext,
                 endpoint: Optional[str] = None,
                 backend: BackendAdapter = NFT_STORAGE,
                 gateway_host: str = DEFAULT_GATEWAY_HOST,
                 uploader: Optional[Uploader] = None,
                 **uploader_options):
        self.auth = auth
        self.gateway_host = gateway_host
        self.uploader = uploader or Uploader(auth, backend=backend, endpoint=endpoint, **uploader_options)
        self.logger = logging.getLogger(__name__)

    @classmethod
    def with_secret_key(cls, secret_key: bytes, *,
                        minting_agent: str,
                        solana_cluster: Union[str, SolanaCluster] = SolanaCluster.DEVNET,
                        agent_version: Optional[str] = None,
                        **kwargs) -> 'MetaplexStorageClient':
        """Client signing with an in-memory Ed25519 secret key."""
        auth = AuthContext.with_secret_key(
            secret_key,
            minting_agent=minting_agent,
            solana_cluster=solana_cluster,
            agent_version=agent_version,
        )
        return cls(auth, **kwargs)

    @classmethod
    def with_signer(cls, sign_message: SignMessage, public_key: bytes, *,
                    minting_agent: str,
                    solana_cluster: Union[str, SolanaCluster] = SolanaCluster.DEVNET,
                    agent_version: Optional[str] = None,
                    **kwargs) -> 'MetaplexStorageClient':
        """Client signing through an external callable, such as a wallet."""
        auth = AuthContext.with_signer(
            sign_message,
            public_key,
            minting_agent=minting_agent,
            solana_cluster=solana_cluster,
            agent_version=agent_version,
        )
        return cls(auth, **kwargs)

    def store_car(self, car: Union[CarArchive, bytes],
                  root: Optional[Union[CID, str]] = None, **options) -> str:
        """Upload a CAR, returning its root CID."""
        return self.uploader.upload_car(car, root, **options)

    def store_blob(self, content: bytes, **options) -> str:
        """Store raw bytes as a single UnixFS file, returning its CID."""
        blockstore = MemoryBlockStore()
        root = pack_files([File(name=BLOB_FILENAME, content=content)], blockstore,
                          wrap_with_directory=False)
        return self.store_car(CarArchive([root], blockstore), root, **options)

    def store_directory(self, files: Iterable[File], **options) -> UploadFilesResult:
        """Store files wrapped in a directory."""
        return self.uploader.upload_files(files, **options)

    def store_prepared_nft(self, nft: PackagedNFT, **options) -> StoreNFTResult:
        """
        Upload the asset and metadata archives of a packaged NFT.

        Assets are stored first so that the metadata never references
        content the backend has not accepted.
        """
        asset_root = self.store_car(nft.encoded_assets.car, nft.encoded_assets.cid, **options)
        metadata_root = self.store_car(nft.encoded_metadata.car, nft.encoded_metadata.cid, **options)

        self.logger.info(f"Stored NFT metadata at {nft.metadata_uri}")
        return StoreNFTResult(
            metadata=nft.metadata,
            asset_root_cid=asset_root,
            metadata_root_cid=metadata_root,
            metadata_gateway_url=nft.metadata_gateway_url,
            metadata_uri=nft.metadata_uri,
        )

    def store_nft_from_filesystem(self, metadata_path: Union[str, Path],
                                  image_path: Optional[Union[str, Path]] = None, *,
                                  validate_schema: bool = False,
                                  **options) -> StoreNFTResult:
        """Load an NFT from disk, package it and store it."""
        nft = load_nft_from_filesystem(
            metadata_path,
            image_path,
            gateway_host=self.gateway_host,
            validate_schema=validate_schema,
        )
        return self.store_prepared_nft(nft, **options)

    def store_bundle(self, bundle: NFTBundle, **options) -> str:
        """Upload every NFT in a bundle as one CAR, returning the bundle root."""
        encoded = bundle.as_car()
        return self.store_car(encoded.car, encoded.cid, **options)
