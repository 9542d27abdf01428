"""
Content Identifiers

This module provides unsigned varint coding, sha2-256 multihashes and the
CID type used to address every block produced by the packaging pipeline.

References:
- CID: https://github.com/multiformats/cid
- Multihash: https://github.com/multiformats/multihash
- Unsigned varint: https://github.com/multiformats/unsigned-varint
"""

import base64
import hashlib
from dataclasses import dataclass
from typing import Tuple, Union

import base58

from .exceptions import InvalidCIDError


# Multicodec codes
RAW = 0x55
DAG_PB = 0x70
DAG_CBOR = 0x71
SHA2_256 = 0x12
ED25519_PUB = 0xED

SHA2_256_LENGTH = 32

CODEC_NAMES = {
    RAW: "raw",
    DAG_PB: "dag-pb",
    DAG_CBOR: "dag-cbor",
}

# Multibase prefixes
BASE32_PREFIX = "b"
BASE58BTC_PREFIX = "z"

# Varints longer than this cannot hold a uint64
MAX_VARINT_BYTES = 9


def encode_varint(value: int) -> bytes:
    """Encode a non-negative integer as an unsigned LEB128 varint."""
    if value < 0:
        raise ValueError(f"varint value must be non-negative, got {value}")

    output = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            output.append(byte | 0x80)
        else:
            output.append(byte)
            break
    return bytes(output)


def decode_varint(data: bytes, offset: int = 0) -> Tuple[int, int]:
    """
    Decode an unsigned varint.

    Args:
        data: Buffer holding the varint
        offset: Position of the first varint byte

    Returns:
        Tuple of (value, offset just past the varint)
    """
    value = 0
    shift = 0
    position = offset

    while True:
        if position >= len(data):
            raise ValueError("truncated varint")
        if position - offset >= MAX_VARINT_BYTES:
            raise ValueError("varint too long")

        byte = data[position]
        value |= (byte & 0x7F) << shift
        position += 1

        if not byte & 0x80:
            return value, position
        shift += 7


def varint_size(value: int) -> int:
    """Number of bytes needed to encode value as a varint."""
    return len(encode_varint(value))


def sha256_multihash(data: bytes) -> bytes:
    """Compute a sha2-256 multihash of data."""
    digest = hashlib.sha256(data).digest()
    return encode_varint(SHA2_256) + encode_varint(len(digest)) + digest


def decode_multihash(data: bytes, offset: int = 0) -> Tuple[int, bytes, int]:
    """
    Decode a multihash.

    Returns:
        Tuple of (hash function code, digest, offset past the multihash)
    """
    try:
        code, position = decode_varint(data, offset)
        length, position = decode_varint(data, position)
    except ValueError as e:
        raise InvalidCIDError(f"invalid multihash: {e}") from e

    end = position + length
    if end > len(data):
        raise InvalidCIDError("truncated multihash digest")

    return code, bytes(data[position:end]), end


def _b32_encode(data: bytes) -> str:
    return base64.b32encode(data).decode("ascii").lower().rstrip("=")


def _b32_decode(text: str) -> bytes:
    padding = "=" * (-len(text) % 8)
    return base64.b32decode(text.upper() + padding)


@dataclass(frozen=True)
class CID:
    """
    Content identifier: version, content codec and multihash.

    CIDv1 renders as lower-case base32 with the ``b`` multibase prefix,
    CIDv0 as a bare base58btc string.
    """

    version: int
    codec: int
    multihash: bytes

    def __post_init__(self):
        if self.version not in (0, 1):
            raise InvalidCIDError(f"unsupported CID version: {self.version}")
        if self.version == 0 and self.codec != DAG_PB:
            raise InvalidCIDError("CIDv0 only supports the dag-pb codec")

        code, digest, end = decode_multihash(self.multihash)
        if end != len(self.multihash):
            raise InvalidCIDError("trailing bytes after multihash")
        if self.version == 0 and (code != SHA2_256 or len(digest) != SHA2_256_LENGTH):
            raise InvalidCIDError("CIDv0 requires a sha2-256 multihash")

    @classmethod
    def from_data(cls, data: bytes, codec: int = RAW) -> 'CID':
        """Create a CIDv1 addressing data with a sha2-256 multihash."""
        return cls(version=1, codec=codec, multihash=sha256_multihash(data))

    @classmethod
    def parse(cls, text: str) -> 'CID':
        """Parse the string form of a CID."""
        if not text:
            raise InvalidCIDError("empty CID string")

        try:
            if len(text) == 46 and text.startswith("Qm"):
                return cls.decode(base58.b58decode(text))
            if text[0] in (BASE32_PREFIX, BASE32_PREFIX.upper()):
                return cls.decode(_b32_decode(text[1:]))
            if text[0] == BASE58BTC_PREFIX:
                return cls.decode(base58.b58decode(text[1:]))
        except (ValueError, TypeError) as e:
            raise InvalidCIDError(f"invalid CID string {text!r}: {e}") from e

        raise InvalidCIDError(f"unsupported multibase prefix in CID {text!r}")

    @classmethod
    def decode(cls, data: bytes) -> 'CID':
        """Decode a binary CID that spans the whole buffer."""
        cid, end = cls.decode_from(data)
        if end != len(data):
            raise InvalidCIDError("trailing bytes after CID")
        return cid

    @classmethod
    def decode_from(cls, data: bytes, offset: int = 0) -> Tuple['CID', int]:
        """
        Decode a binary CID embedded in a larger buffer.

        Returns:
            Tuple of (CID, offset just past the CID)
        """
        if len(data) - offset >= 2 and data[offset] == SHA2_256 and data[offset + 1] == SHA2_256_LENGTH:
            end = offset + 2 + SHA2_256_LENGTH
            if end > len(data):
                raise InvalidCIDError("truncated CIDv0")
            return cls(version=0, codec=DAG_PB, multihash=bytes(data[offset:end])), end

        try:
            version, position = decode_varint(data, offset)
            codec, position = decode_varint(data, position)
        except ValueError as e:
            raise InvalidCIDError(f"invalid CID prefix: {e}") from e

        if version != 1:
            raise InvalidCIDError(f"unsupported CID version: {version}")

        _, _, end = decode_multihash(data, position)
        return cls(version=1, codec=codec, multihash=bytes(data[position:end])), end

    @property
    def bytes(self) -> bytes:
        """Binary form of the CID."""
        if self.version == 0:
            return self.multihash
        return encode_varint(self.version) + encode_varint(self.codec) + self.multihash

    @property
    def digest(self) -> bytes:
        """Raw hash digest."""
        return decode_multihash(self.multihash)[1]

    @property
    def codec_name(self) -> str:
        return CODEC_NAMES.get(self.codec, hex(self.codec))

    def to_v1(self) -> 'CID':
        if self.version == 1:
            return self
        return CID(version=1, codec=self.codec, multihash=self.multihash)

    def verify(self, data: bytes) -> bool:
        """Check that data hashes to this CID's digest."""
        return hashlib.sha256(data).digest() == self.digest

    def __str__(self) -> str:
        if self.version == 0:
            return base58.b58encode(self.multihash).decode("ascii")
        return BASE32_PREFIX + _b32_encode(self.bytes)

    def __repr__(self) -> str:
        return f"CID({self})"


def as_cid(value: Union[CID, str, bytes]) -> CID:
    """Coerce a CID, CID string or binary CID into a CID."""
    if isinstance(value, CID):
        return value
    if isinstance(value, str):
        return CID.parse(value)
    if isinstance(value, (bytes, bytearray)):
        return CID.decode(bytes(value))
    raise InvalidCIDError(f"cannot interpret {type(value).__name__} as a CID")
