"""
Metaplex Auth - NFT Packaging

This module packages a Metaplex NFT for storage. The image and any
additional asset files are imported as one UnixFS directory; the metadata
is linked against that directory's root CID, serialized to
``metadata.json`` and imported into a second directory. Both directories
are written to the same block store and each can be archived and verified
on its own.

Nothing is uploaded here; see network.client for storing the result.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Union

from ipld.blockstore import BlockStore, MemoryBlockStore
from ipld.car import CarArchive
from ipld.cid import CID
from ipld.exceptions import IPLDError
from ipld.unixfs import File, pack_files

from .exceptions import NFTError
from .links import DEFAULT_GATEWAY_HOST, link_metadata, make_gateway_url, make_ipfs_uri
from .metadata import MetaplexMetadata, coerce_metadata, ensure_valid_metadata

METADATA_FILENAME = "metadata.json"
DEFAULT_IMAGE_FILENAME = "image.png"

# Asset files are plain named payloads
AssetFile = File

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EncodedCar:
    """Root CID of a packaged directory and the archive rooted at it."""

    cid: CID
    car: CarArchive


@dataclass(frozen=True)
class PackagedNFT:
    """An NFT ready for upload: linked metadata plus both archives."""

    metadata: MetaplexMetadata
    metadata_gateway_url: str
    metadata_uri: str
    encoded_metadata: EncodedCar
    encoded_assets: EncodedCar

    @property
    def asset_root_cid(self) -> CID:
        return self.encoded_assets.cid

    @property
    def metadata_root_cid(self) -> CID:
        return self.encoded_metadata.cid

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metadata": self.metadata.to_dict(),
            "metadata_gateway_url": self.metadata_gateway_url,
            "metadata_uri": self.metadata_uri,
            "asset_root_cid": str(self.asset_root_cid),
            "metadata_root_cid": str(self.metadata_root_cid),
        }


def encode_directory(files: Iterable[File], blockstore: BlockStore) -> EncodedCar:
    """Import files into a wrapping directory and return it as an EncodedCar."""
    try:
        root = pack_files(files, blockstore, wrap_with_directory=True)
    except IPLDError as e:
        raise NFTError(f"failed to package files: {e}") from e
    return EncodedCar(cid=root, car=CarArchive([root], blockstore))


def prepare_metaplex_nft(metadata: Union[Dict[str, Any], MetaplexMetadata],
                         image_file: File,
                         additional_files: Iterable[File] = (),
                         *,
                         blockstore: Optional[BlockStore] = None,
                         gateway_host: str = DEFAULT_GATEWAY_HOST,
                         validate_schema: bool = False) -> PackagedNFT:
    """
    Package metadata and asset files into two content-addressed directories.

    Args:
        metadata: Metadata record, as a dict or MetaplexMetadata
        image_file: The primary image
        additional_files: Animations, alternate resolutions and other assets
        blockstore: Block store to write into; a new MemoryBlockStore if None
        gateway_host: HTTP gateway used for gateway URLs
        validate_schema: Validate the metadata against the Metaplex schema first

    Returns:
        PackagedNFT with the linked metadata and both archives

    Raises:
        MetadataValidationError: If validation is requested and fails
    """
    if validate_schema:
        parsed = ensure_valid_metadata(metadata)
    else:
        parsed = coerce_metadata(metadata)

    if blockstore is None:
        blockstore = MemoryBlockStore()

    if not image_file.name:
        image_file = File(name=DEFAULT_IMAGE_FILENAME, content=image_file.content, type=image_file.type)

    additional_files = list(additional_files)
    encoded_assets = encode_directory([image_file] + additional_files, blockstore)

    linked = link_metadata(
        parsed,
        image_file.name,
        [f.name for f in additional_files],
        encoded_assets.cid,
        gateway_host=gateway_host,
    )

    metadata_file = File(name=METADATA_FILENAME, content=linked.encode(), type="application/json")
    encoded_metadata = encode_directory([metadata_file], blockstore)

    logger.debug(
        f"Prepared NFT {linked.name or image_file.name}: "
        f"assets {encoded_assets.cid}, metadata {encoded_metadata.cid}"
    )

    return PackagedNFT(
        metadata=linked,
        metadata_gateway_url=make_gateway_url(encoded_metadata.cid, METADATA_FILENAME, gateway_host),
        metadata_uri=make_ipfs_uri(encoded_metadata.cid, METADATA_FILENAME),
        encoded_metadata=encoded_metadata,
        encoded_assets=encoded_assets,
    )
