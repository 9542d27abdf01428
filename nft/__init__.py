"""
Metaplex Auth - NFT Packaging

This package provides Metaplex metadata handling, metadata linking,
single-NFT packaging, multi-NFT bundles and filesystem loading.
"""

from .exceptions import (
    NFTError,
    MetadataValidationError,
    CapacityError,
    DuplicateIdentifierError,
    InvalidIdentifierError,
    NFTLoadError,
)

from .metadata import (
    FileDescription,
    Attribute,
    Creator,
    Collection,
    Properties,
    MetaplexMetadata,
    MetadataValidator,
    METADATA_SCHEMA,
    ensure_valid_metadata,
)

from .links import (
    DEFAULT_GATEWAY_HOST,
    link_metadata,
    make_gateway_url,
    make_ipfs_uri,
)

from .prepare import (
    AssetFile,
    EncodedCar,
    PackagedNFT,
    prepare_metaplex_nft,
)

from .bundle import (
    MAX_ENTRIES,
    MAX_ID_LEN,
    ROOT_BLOCK_SIZE_LIMIT,
    NFTBundle,
)

from .load import (
    iter_files,
    load_nft_from_filesystem,
)

__version__ = "0.1.0"

__all__ = [
    # Exceptions
    "NFTError",
    "MetadataValidationError",
    "CapacityError",
    "DuplicateIdentifierError",
    "InvalidIdentifierError",
    "NFTLoadError",

    # Metadata
    "FileDescription",
    "Attribute",
    "Creator",
    "Collection",
    "Properties",
    "MetaplexMetadata",
    "MetadataValidator",
    "METADATA_SCHEMA",
    "ensure_valid_metadata",

    # Linking
    "DEFAULT_GATEWAY_HOST",
    "link_metadata",
    "make_gateway_url",
    "make_ipfs_uri",

    # Packaging
    "AssetFile",
    "EncodedCar",
    "PackagedNFT",
    "prepare_metaplex_nft",

    # Bundles
    "MAX_ENTRIES",
    "MAX_ID_LEN",
    "ROOT_BLOCK_SIZE_LIMIT",
    "NFTBundle",

    # Loading
    "iter_files",
    "load_nft_from_filesystem",
]
