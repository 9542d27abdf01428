"""
Storage Backends

A backend adapter describes how to talk to one storage service: where
CARs are posted and how its JSON responses are read. The uploader is
parameterized with an adapter instead of being subclassed per service.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

# (root CID reported by the backend, error message)
ParsedResponse = Tuple[Optional[str], Optional[str]]


def _is_success(status: int) -> bool:
    return 200 <= status < 300


def parse_nft_storage_response(status: int, body: Any) -> ParsedResponse:
    """Read ``{ok, value: {cid}}`` / ``{ok: false, error: {message}}``."""
    if not isinstance(body, dict):
        return None, f"HTTP {status}: unexpected response body"

    if not _is_success(status) or body.get("ok") is False:
        error = body.get("error")
        message = error.get("message") if isinstance(error, dict) else None
        return None, message or f"HTTP {status}: unknown error"

    value = body.get("value")
    cid = value.get("cid") if isinstance(value, dict) else None
    return cid, None


def parse_web3_storage_response(status: int, body: Any) -> ParsedResponse:
    """Read ``{cid}`` / ``{message}``."""
    if not isinstance(body, dict):
        return None, f"HTTP {status}: unexpected response body"

    if not _is_success(status):
        return None, body.get("message") or f"HTTP {status}: unknown error"

    return body.get("cid"), None


@dataclass(frozen=True)
class BackendAdapter:
    """Endpoint path and response parsing for one storage service."""

    name: str
    path: str
    default_endpoint: str
    parse_response: Callable[[int, Any], ParsedResponse]

    def upload_url(self, endpoint: Optional[str] = None) -> str:
        base = (endpoint or self.default_endpoint).rstrip("/")
        return base + self.path


NFT_STORAGE = BackendAdapter(
    name="nft.storage",
    path="/metaplex/upload",
    default_endpoint="https://api.nft.storage",
    parse_response=parse_nft_storage_response,
)

WEB3_STORAGE = BackendAdapter(
    name="web3.storage",
    path="/car",
    default_endpoint="https://api.web3.storage",
    parse_response=parse_web3_storage_response,
)

BACKENDS: Dict[str, BackendAdapter] = {
    NFT_STORAGE.name: NFT_STORAGE,
    WEB3_STORAGE.name: WEB3_STORAGE,
}


def get_backend(name: str) -> BackendAdapter:
    try:
        return BACKENDS[name]
    except KeyError:
        raise ValueError(f"Unknown backend {name!r}, expected one of: {', '.join(BACKENDS)}")
