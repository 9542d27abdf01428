"""
Metaplex Auth - Metadata Linking

This module rewrites the file references of a metadata record once the
referenced asset files have been packaged under a known root CID. Each
matching reference is resolved to an HTTP gateway URL and an ``ipfs://``
URI.

Linking is a one-shot transform: after linking the references no longer
name the original files, so applying it twice changes nothing further.
"""

from dataclasses import replace
from typing import Iterable, List, Union
from urllib.parse import quote

from ipld.cid import CID

from .metadata import FileDescription, MetaplexMetadata

DEFAULT_GATEWAY_HOST = "https://nftstorage.link"


def _encode_path(path: str) -> str:
    return "/".join(quote(segment, safe="") for segment in path.lstrip("/").split("/"))


def make_gateway_url(cid: Union[CID, str], path: str,
                     host: str = DEFAULT_GATEWAY_HOST) -> str:
    """Build ``{host}/ipfs/{cid}/{path}``."""
    return f"{host.rstrip('/')}/ipfs/{cid}/{_encode_path(path)}"


def make_ipfs_uri(cid: Union[CID, str], path: str) -> str:
    """Build ``ipfs://{cid}/{path}``."""
    return f"ipfs://{cid}/{_encode_path(path)}"


def link_metadata(metadata: MetaplexMetadata, image_filename: str,
                  additional_filenames: Iterable[str],
                  asset_root_cid: Union[CID, str],
                  gateway_host: str = DEFAULT_GATEWAY_HOST) -> MetaplexMetadata:
    """
    Resolve the file references of metadata against the asset root.

    Args:
        metadata: Metadata whose references name uploaded files
        image_filename: Name of the image file in the asset directory
        additional_filenames: Names of the other asset files
        asset_root_cid: Root CID of the asset directory
        gateway_host: HTTP gateway used for gateway URLs

    Returns:
        A new MetaplexMetadata:
        - ``image`` is always the gateway URL of the image file
        - each ``properties.files`` entry naming an uploaded file becomes two
          entries, a gateway URL with ``cdn=True`` and an ``ipfs://`` URI with
          ``cdn=False``, all other fields kept
        - ``animation_url`` becomes a gateway URL only if it names an
          additional file
    """
    additional = set(additional_filenames)
    uploaded = additional | {image_filename}
    root = str(asset_root_cid)

    files: List[FileDescription] = []
    for entry in metadata.properties.files:
        if entry.uri not in uploaded:
            files.append(entry)
            continue
        files.append(FileDescription(
            uri=make_gateway_url(root, entry.uri, gateway_host),
            type=entry.type,
            cdn=True,
            extra=dict(entry.extra),
        ))
        files.append(FileDescription(
            uri=make_ipfs_uri(root, entry.uri),
            type=entry.type,
            cdn=False,
            extra=dict(entry.extra),
        ))

    animation_url = metadata.animation_url
    if animation_url and animation_url in additional:
        animation_url = make_gateway_url(root, animation_url, gateway_host)

    properties = metadata.properties
    return metadata.with_changes(
        image=make_gateway_url(root, image_filename, gateway_host),
        animation_url=animation_url,
        properties=replace(properties, files=files),
    )
