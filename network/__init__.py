"""
Metaplex Auth - Network Module

This module uploads content archives to NFT.Storage compatible backends:
- Backend adapters for nft.storage and web3.storage
- Tree-walk CAR splitting into upload-sized chunks
- Concurrent, retried chunk uploads with root verification
- A high-level client for storing NFTs, bundles and files
"""

from .exceptions import (
    UploadError,
    NetworkError,
    IntegrityError,
    UploadCancelledError,
)

from .backends import (
    BackendAdapter,
    NFT_STORAGE,
    WEB3_STORAGE,
    get_backend,
)

from .splitter import (
    MAX_CHUNK_SIZE,
    TreewalkCarSplitter,
    join_car_chunks,
    split_car,
)

from .upload import (
    MAX_CONCURRENT_UPLOADS,
    MAX_PUT_RETRIES,
    RetryConfig,
    UploadFilesResult,
    Uploader,
    metaplex_auth_headers,
)

from .client import (
    MetaplexStorageClient,
    StoreNFTResult,
)

__all__ = [
    "UploadError",
    "NetworkError",
    "IntegrityError",
    "UploadCancelledError",
    "BackendAdapter",
    "NFT_STORAGE",
    "WEB3_STORAGE",
    "get_backend",
    "MAX_CHUNK_SIZE",
    "TreewalkCarSplitter",
    "join_car_chunks",
    "split_car",
    "MAX_CONCURRENT_UPLOADS",
    "MAX_PUT_RETRIES",
    "RetryConfig",
    "UploadFilesResult",
    "Uploader",
    "metaplex_auth_headers",
    "MetaplexStorageClient",
    "StoreNFTResult",
]
