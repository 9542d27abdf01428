"""
Ed25519 Key Management

This module wraps Ed25519 signing keys, derives the did:key identifier
used as an upload token issuer, and loads Solana keypair files.

References:
- did:key: https://w3c-ccg.github.io/did-method-key/
- Multicodec table: https://github.com/multiformats/multicodec
"""

import json
from pathlib import Path
from typing import List, Union

import base58
from nacl.exceptions import BadSignatureError, CryptoError as NaclCryptoError
from nacl.signing import SigningKey, VerifyKey

from ipld.cid import ED25519_PUB, decode_varint, encode_varint

from .exceptions import InvalidKeyError

SEED_LENGTH = 32
PUBLIC_KEY_LENGTH = 32
# Solana secret keys are the 32-byte seed followed by the public key
SOLANA_SECRET_KEY_LENGTH = 64

DID_KEY_PREFIX = "did:key:"
MULTIBASE_BASE58BTC = "z"

MULTICODEC_ED25519_PUB = encode_varint(ED25519_PUB)


def key_did(public_key: bytes) -> str:
    """
    Derive the did:key identifier for an Ed25519 public key.

    Args:
        public_key: 32-byte raw public key

    Returns:
        ``did:key:z...`` string (multicodec 0xed prefix, base58btc multibase)
    """
    if len(public_key) != PUBLIC_KEY_LENGTH:
        raise InvalidKeyError(f"Ed25519 public key must be {PUBLIC_KEY_LENGTH} bytes, got {len(public_key)}")

    encoded = base58.b58encode(MULTICODEC_ED25519_PUB + bytes(public_key)).decode("ascii")
    return f"{DID_KEY_PREFIX}{MULTIBASE_BASE58BTC}{encoded}"


def public_key_from_did(did: str) -> bytes:
    """Recover the raw Ed25519 public key embedded in a did:key string."""
    if not did.startswith(DID_KEY_PREFIX + MULTIBASE_BASE58BTC):
        raise InvalidKeyError(f"Not a base58btc did:key identifier: {did}")

    try:
        decoded = base58.b58decode(did[len(DID_KEY_PREFIX) + 1:])
        codec, offset = decode_varint(decoded)
    except ValueError as e:
        raise InvalidKeyError(f"Malformed did:key identifier {did}: {e}") from e

    if codec != ED25519_PUB:
        raise InvalidKeyError(f"did:key uses multicodec {hex(codec)}, expected ed25519-pub")

    public_key = decoded[offset:]
    if len(public_key) != PUBLIC_KEY_LENGTH:
        raise InvalidKeyError("did:key does not embed a 32-byte public key")
    return public_key


class PublicKey:
    """
    Wrapper for Ed25519 public key operations.
    """

    def __init__(self, key_bytes: bytes):
        if not isinstance(key_bytes, bytes) or len(key_bytes) != PUBLIC_KEY_LENGTH:
            raise InvalidKeyError(f"Public key must be {PUBLIC_KEY_LENGTH} bytes")
        self._key = VerifyKey(key_bytes)

    @property
    def bytes(self) -> bytes:
        return bytes(self._key)

    @property
    def hex(self) -> str:
        return self.bytes.hex()

    @property
    def did(self) -> str:
        return key_did(self.bytes)

    def verify(self, signature: bytes, message: bytes) -> bool:
        """
        Verify a detached signature.

        Args:
            signature: 64-byte Ed25519 signature
            message: Signed message bytes

        Returns:
            True if the signature is valid for this key
        """
        try:
            self._key.verify(message, signature)
            return True
        except (BadSignatureError, ValueError, NaclCryptoError):
            return False

    def __eq__(self, other) -> bool:
        return isinstance(other, PublicKey) and self.bytes == other.bytes

    def __hash__(self) -> int:
        return hash(self.bytes)


class Ed25519Keypair:
    """
    Ed25519 signing keypair.

    Satisfies the signing capability expected by AuthContext: a 32-byte
    ``public_key`` and a ``sign(message)`` method returning a detached
    signature.
    """

    def __init__(self, key_bytes: Union[bytes, None] = None):
        """
        Initialize private key.

        Args:
            key_bytes: 32-byte seed or 64-byte Solana secret key.
                If None, generates a random key.
        """
        if key_bytes is None:
            self._key = SigningKey.generate()
            return

        if not isinstance(key_bytes, (bytes, bytearray)):
            raise InvalidKeyError("Private key must be bytes")
        key_bytes = bytes(key_bytes)

        if len(key_bytes) == SOLANA_SECRET_KEY_LENGTH:
            seed, embedded_public = key_bytes[:SEED_LENGTH], key_bytes[SEED_LENGTH:]
            self._key = SigningKey(seed)
            if bytes(self._key.verify_key) != embedded_public:
                raise InvalidKeyError("Secret key does not match its embedded public key")
        elif len(key_bytes) == SEED_LENGTH:
            self._key = SigningKey(key_bytes)
        else:
            raise InvalidKeyError(
                f"Private key must be {SEED_LENGTH} or {SOLANA_SECRET_KEY_LENGTH} bytes, got {len(key_bytes)}"
            )

    @property
    def seed(self) -> bytes:
        return bytes(self._key)

    @property
    def secret_key(self) -> bytes:
        """64-byte secret key in Solana / tweetnacl layout."""
        return self.seed + self.public_key

    @property
    def public_key(self) -> bytes:
        return bytes(self._key.verify_key)

    @property
    def verify_key(self) -> PublicKey:
        return PublicKey(self.public_key)

    @property
    def did(self) -> str:
        return key_did(self.public_key)

    @classmethod
    def generate(cls) -> 'Ed25519Keypair':
        return cls()

    @classmethod
    def from_keyfile(cls, path: Union[str, Path]) -> 'Ed25519Keypair':
        return load_solana_keypair(path)

    def sign(self, message: bytes) -> bytes:
        """
        Sign a message.

        Args:
            message: Message bytes

        Returns:
            64-byte detached Ed25519 signature
        """
        return self._key.sign(bytes(message)).signature


def load_solana_keypair(path: Union[str, Path]) -> 'Ed25519Keypair':
    """
    Load a Solana CLI keypair file (a JSON array of 64 byte values).

    Args:
        path: Path to the keypair JSON file

    Returns:
        Ed25519Keypair for the keypair
    """
    path = Path(path)
    try:
        values: List[int] = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise InvalidKeyError(f"Failed to read keypair file {path}: {e}") from e

    if not isinstance(values, list) or not all(isinstance(v, int) and 0 <= v < 256 for v in values):
        raise InvalidKeyError(f"Keypair file {path} must contain a JSON array of byte values")

    return Ed25519Keypair(bytes(values))


def verify_signature(public_key: bytes, signature: bytes, message: bytes) -> bool:
    """Check a detached Ed25519 signature against a raw public key."""
    return PublicKey(bytes(public_key)).verify(signature, message)
