"""
Metaplex Auth - Cryptographic Operations Module

This module provides the key handling and token issuance used to
authorize uploads:
- Ed25519 keypairs and Solana keypair files
- did:key issuer identifiers
- Signed single-use upload tokens

Dependencies:
- PyNaCl: Ed25519 signing and verification
- base58: did:key multibase encoding
"""

from .exceptions import (
    CryptoError,
    ConfigurationError,
    InvalidKeyError,
    SigningError,
    InvalidTokenError,
)

from .keys import (
    Ed25519Keypair,
    PublicKey,
    key_did,
    public_key_from_did,
    load_solana_keypair,
    verify_signature,
)

from .auth import (
    AuthContext,
    SolanaCluster,
    UploadToken,
    make_upload_token,
    decode_upload_token,
    verify_upload_token,
)

__all__ = [
    # Exceptions
    "CryptoError",
    "ConfigurationError",
    "InvalidKeyError",
    "SigningError",
    "InvalidTokenError",

    # Keys
    "Ed25519Keypair",
    "PublicKey",
    "key_did",
    "public_key_from_did",
    "load_solana_keypair",
    "verify_signature",

    # Tokens
    "AuthContext",
    "SolanaCluster",
    "UploadToken",
    "make_upload_token",
    "decode_upload_token",
    "verify_upload_token",
]
