"""
Metaplex Auth - Filesystem Loading

This module discovers NFTs on disk: a metadata JSON file, its image and
any additional asset files named in ``properties.files``. Paths inside the
metadata are resolved relative to the directory holding the JSON file.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

from ipld.blockstore import BlockStore
from ipld.unixfs import File

from .exceptions import NFTLoadError
from .links import DEFAULT_GATEWAY_HOST
from .metadata import coerce_metadata
from .prepare import PackagedNFT, prepare_metaplex_nft

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def iter_files(path: PathLike) -> Iterator[Tuple[str, Path]]:
    """
    Walk a directory tree, yielding (relative_name, path) for every file.

    Uses an explicit worklist, so deep trees do not hit the recursion limit.
    Entries are visited in sorted order. A path naming a single file yields
    just that file.
    """
    root = Path(path)
    if root.is_file():
        yield root.name, root
        return
    if not root.is_dir():
        raise NFTLoadError(f"no such file or directory: {root}")

    pending = sorted(root.iterdir(), reverse=True)
    while pending:
        entry = pending.pop()
        if entry.is_dir():
            pending.extend(sorted(entry.iterdir(), reverse=True))
        elif entry.is_file():
            yield entry.relative_to(root).as_posix(), entry


def read_metadata_file(metadata_path: PathLike) -> Dict[str, Any]:
    path = Path(metadata_path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise NFTLoadError(f"failed to read metadata file {path}: {e}") from e

    if not isinstance(data, dict):
        raise NFTLoadError(f"metadata file {path} does not contain a JSON object")
    return data


def _local_file(parent: Path, reference: Optional[str]) -> Optional[Path]:
    if not reference or "://" in reference:
        return None
    candidate = (parent / reference).resolve()
    return candidate if candidate.is_file() else None


def _file_name(path: Path, parent: Path) -> str:
    try:
        return path.resolve().relative_to(parent.resolve()).as_posix()
    except ValueError:
        return path.name


def find_image_file(metadata_path: PathLike, metadata: Dict[str, Any]) -> Path:
    """
    Locate the image for a metadata file.

    Tries the ``image`` field as a path relative to the metadata file, then
    a ``.png`` file sharing the metadata file's basename.
    """
    metadata_path = Path(metadata_path)
    parent = metadata_path.parent

    from_field = _local_file(parent, metadata.get("image"))
    if from_field is not None:
        return from_field

    from_basename = parent / f"{metadata_path.stem}.png"
    if from_basename.is_file():
        return from_basename

    raise NFTLoadError(f"unable to determine path to image for {metadata_path}")


def load_nft_from_filesystem(metadata_path: PathLike,
                             image_path: Optional[PathLike] = None,
                             *,
                             blockstore: Optional[BlockStore] = None,
                             gateway_host: str = DEFAULT_GATEWAY_HOST,
                             validate_schema: bool = False) -> PackagedNFT:
    """
    Load and package an NFT from a metadata JSON file.

    Args:
        metadata_path: Path to the metadata JSON file
        image_path: Path to the image; located automatically if None
        blockstore: Block store to write into
        gateway_host: HTTP gateway used for gateway URLs
        validate_schema: Validate the metadata against the Metaplex schema

    Returns:
        The packaged NFT

    Raises:
        NFTLoadError: If the metadata or image cannot be read
    """
    metadata_path = Path(metadata_path)
    parent = metadata_path.parent
    raw = read_metadata_file(metadata_path)

    image = Path(image_path) if image_path is not None else find_image_file(metadata_path, raw)
    if not image.is_file():
        raise NFTLoadError(f"image file not found: {image}")
    image_resolved = image.resolve()

    additional: List[Path] = []
    seen = {image_resolved}
    for entry in coerce_metadata(raw).properties.files:
        candidate = _local_file(parent, entry.uri)
        if candidate is not None and candidate not in seen:
            seen.add(candidate)
            additional.append(candidate)

    try:
        image_file = File.from_path(image, name=_file_name(image, parent))
        additional_files = [File.from_path(p, name=_file_name(p, parent)) for p in additional]
    except OSError as e:
        raise NFTLoadError(f"failed to read asset file: {e}") from e

    logger.debug(f"Loaded {metadata_path} with image {image_file.name} and {len(additional_files)} additional file(s)")

    return prepare_metaplex_nft(
        raw,
        image_file,
        additional_files,
        blockstore=blockstore,
        gateway_host=gateway_host,
        validate_schema=validate_schema,
    )
