"""
Upload Token Issuance

This module builds the single-use capability tokens that authorize a
store request for one content root. A token is three base64url segments,
``header.payload.signature``, where the payload names the issuer's
did:key, the root CID being stored and a set of descriptive tags.

The token is built fresh for every upload and never cached.
"""

import base64
import binascii
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Union

from ipld.cid import CID

from .exceptions import ConfigurationError, InvalidKeyError, InvalidTokenError, SigningError
from .keys import PUBLIC_KEY_LENGTH, Ed25519Keypair, key_did, public_key_from_did, verify_signature

TOKEN_HEADER = {"alg": "EdDSA", "typ": "token"}

DEFAULT_CHAIN = "solana"

# Tag keys
TAG_CHAIN = "chain"
TAG_CLUSTER = "solanaCluster"
TAG_MINTING_AGENT = "mintingAgent"
TAG_AGENT_VERSION = "agentVersion"
LEGACY_TAG_CLUSTER = "solana-cluster"

SignMessage = Callable[[bytes], bytes]

logger = logging.getLogger(__name__)


class SolanaCluster(str, Enum):
    """Solana clusters a token may be issued for."""
    MAINNET_BETA = "mainnet-beta"
    DEVNET = "devnet"
    TESTNET = "testnet"


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def _b64url_decode(segment: str) -> bytes:
    padding = "=" * (-len(segment) % 4)
    try:
        return base64.urlsafe_b64decode(segment + padding)
    except (binascii.Error, ValueError) as e:
        raise InvalidTokenError(f"Invalid base64url segment: {e}") from e


def _encode_json(value: Mapping[str, Any]) -> str:
    return _b64url_encode(json.dumps(value, separators=(",", ":")).encode("utf-8"))


def _parse_cluster(cluster: Union[str, SolanaCluster]) -> SolanaCluster:
    try:
        return SolanaCluster(cluster)
    except ValueError:
        valid = ", ".join(c.value for c in SolanaCluster)
        raise ConfigurationError(f"Unknown solana cluster {cluster!r}, expected one of: {valid}")


@dataclass(frozen=True)
class AuthContext:
    """
    Identity and tags used to sign upload tokens.

    Created once per session and reused for every token issued during it.
    The signing callable is supplied by the caller and never persisted.
    """

    sign_message: SignMessage = field(repr=False)
    public_key: bytes
    minting_agent: str
    solana_cluster: SolanaCluster = SolanaCluster.DEVNET
    agent_version: Optional[str] = None
    chain: str = DEFAULT_CHAIN

    def __post_init__(self):
        if not isinstance(self.minting_agent, str) or not self.minting_agent.strip():
            raise ConfigurationError("mintingAgent is required and must be a non-empty string")
        if not callable(self.sign_message):
            raise ConfigurationError("sign_message must be callable")
        if not isinstance(self.public_key, (bytes, bytearray)) or len(self.public_key) != PUBLIC_KEY_LENGTH:
            raise ConfigurationError(f"public_key must be {PUBLIC_KEY_LENGTH} bytes")

        object.__setattr__(self, "public_key", bytes(self.public_key))
        object.__setattr__(self, "solana_cluster", _parse_cluster(self.solana_cluster))

    @classmethod
    def with_signer(cls, sign_message: SignMessage, public_key: bytes, *,
                    minting_agent: str,
                    solana_cluster: Union[str, SolanaCluster] = SolanaCluster.DEVNET,
                    agent_version: Optional[str] = None) -> 'AuthContext':
        """Build a context around an external signing callable."""
        return cls(
            sign_message=sign_message,
            public_key=public_key,
            minting_agent=minting_agent,
            solana_cluster=solana_cluster,
            agent_version=agent_version,
        )

    @classmethod
    def with_secret_key(cls, secret_key: bytes, *,
                        minting_agent: str,
                        solana_cluster: Union[str, SolanaCluster] = SolanaCluster.DEVNET,
                        agent_version: Optional[str] = None) -> 'AuthContext':
        """
        Build a context that signs with an in-memory Ed25519 key.

        Args:
            secret_key: 32-byte seed or 64-byte Solana secret key
            minting_agent: Name of the tool minting the NFT
            solana_cluster: Cluster the NFT is minted on
            agent_version: Optional version of the minting tool
        """
        keypair = Ed25519Keypair(secret_key)
        return cls.with_signer(
            keypair.sign,
            keypair.public_key,
            minting_agent=minting_agent,
            solana_cluster=solana_cluster,
            agent_version=agent_version,
        )

    @property
    def issuer(self) -> str:
        return key_did(self.public_key)

    def tags(self) -> Dict[str, str]:
        tags = {
            TAG_CHAIN: self.chain,
            TAG_CLUSTER: self.solana_cluster.value,
            TAG_MINTING_AGENT: self.minting_agent,
        }
        if self.agent_version:
            tags[TAG_AGENT_VERSION] = self.agent_version
        return tags


@dataclass(frozen=True)
class UploadToken:
    """Decoded form of an upload token."""

    header: Dict[str, Any]
    issuer: str
    root_cid: str
    tags: Dict[str, str]
    signature: bytes
    signed_data: bytes

    @property
    def public_key(self) -> bytes:
        return public_key_from_did(self.issuer)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "header": dict(self.header),
            "iss": self.issuer,
            "rootCID": self.root_cid,
            "tags": dict(self.tags),
        }


def make_upload_token(auth: AuthContext, root_cid: Union[CID, str],
                      extra_tags: Optional[Mapping[str, str]] = None) -> str:
    """
    Issue a signed upload token authorizing a store of root_cid.

    Args:
        auth: Issuer identity and tags
        root_cid: Root of the content to be stored
        extra_tags: Additional tags, merged after the standard ones

    Returns:
        Token string ``header.payload.signature``

    Raises:
        SigningError: If the signing callable fails
    """
    tags = auth.tags()
    if extra_tags:
        tags.update(extra_tags)

    payload = {
        "iss": auth.issuer,
        "req": {
            "put": {
                "rootCID": str(root_cid),
                "tags": tags,
            }
        }
    }

    signed = f"{_encode_json(TOKEN_HEADER)}.{_encode_json(payload)}"

    try:
        signature = auth.sign_message(signed.encode("utf-8"))
    except Exception as e:
        raise SigningError(f"Failed to sign upload token: {e}") from e

    if not isinstance(signature, (bytes, bytearray)):
        raise SigningError(f"Signer returned {type(signature).__name__}, expected bytes")

    logger.debug(f"Issued upload token for {root_cid} as {auth.issuer}")
    return f"{signed}.{_b64url_encode(bytes(signature))}"


def decode_upload_token(token: str) -> UploadToken:
    """
    Parse a token without checking its signature.

    The legacy ``solana-cluster`` tag key is normalized to ``solanaCluster``.
    """
    parts = token.split(".")
    if len(parts) != 3:
        raise InvalidTokenError(f"Token must have 3 segments, got {len(parts)}")

    header_segment, payload_segment, signature_segment = parts
    try:
        header = json.loads(_b64url_decode(header_segment))
        payload = json.loads(_b64url_decode(payload_segment))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise InvalidTokenError(f"Token segment is not valid JSON: {e}") from e

    try:
        put = payload["req"]["put"]
        issuer = payload["iss"]
        root_cid = put["rootCID"]
        tags = dict(put.get("tags") or {})
    except (KeyError, TypeError) as e:
        raise InvalidTokenError(f"Token payload is missing {e}") from e

    if LEGACY_TAG_CLUSTER in tags:
        tags.setdefault(TAG_CLUSTER, tags[LEGACY_TAG_CLUSTER])
        del tags[LEGACY_TAG_CLUSTER]

    return UploadToken(
        header=header,
        issuer=issuer,
        root_cid=root_cid,
        tags=tags,
        signature=_b64url_decode(signature_segment),
        signed_data=f"{header_segment}.{payload_segment}".encode("utf-8"),
    )


def verify_upload_token(token: str, root_cid: Optional[Union[CID, str]] = None) -> UploadToken:
    """
    Decode a token and check its signature against the issuer's did:key.

    Args:
        token: Token string
        root_cid: If given, the root the token must authorize

    Returns:
        The decoded token

    Raises:
        InvalidTokenError: If the token is malformed, badly signed or
            issued for a different root
    """
    decoded = decode_upload_token(token)

    if decoded.header.get("alg") != TOKEN_HEADER["alg"]:
        raise InvalidTokenError(f"Unsupported token algorithm: {decoded.header.get('alg')}")

    try:
        public_key = decoded.public_key
    except InvalidKeyError as e:
        raise InvalidTokenError(f"Token issuer is not a usable did:key: {e}") from e

    if not verify_signature(public_key, decoded.signature, decoded.signed_data):
        raise InvalidTokenError("Token signature does not match its issuer")

    if root_cid is not None and decoded.root_cid != str(root_cid):
        raise InvalidTokenError(f"Token authorizes {decoded.root_cid}, not {root_cid}")

    return decoded
