"""
Metaplex Auth - NFT Metadata

This module provides the Metaplex token metadata structures, their JSON
form, and JSON schema validation of raw metadata records.

Fields that are absent stay absent: to_dict() never emits None values, and
keys the structures do not model are carried in ``extra`` so that records
round-trip unchanged.
"""

import json
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Union

from jsonschema import Draft7Validator

from .exceptions import MetadataValidationError


def _omit_none(data: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in data.items() if value is not None}


@dataclass(frozen=True)
class FileDescription:
    """Entry of ``properties.files``."""

    uri: str
    type: Optional[str] = None
    cdn: Optional[bool] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        result = dict(self.extra)
        result.update(_omit_none({"uri": self.uri, "type": self.type, "cdn": self.cdn}))
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FileDescription':
        extra = {k: v for k, v in data.items() if k not in ("uri", "type", "cdn")}
        return cls(uri=data["uri"], type=data.get("type"), cdn=data.get("cdn"), extra=extra)


@dataclass(frozen=True)
class Attribute:
    """NFT trait."""

    trait_type: str
    value: Union[str, int, float]
    display_type: Optional[str] = None
    max_value: Optional[Union[int, float]] = None
    trait_count: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return _omit_none({
            "trait_type": self.trait_type,
            "value": self.value,
            "display_type": self.display_type,
            "max_value": self.max_value,
            "trait_count": self.trait_count,
        })

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Attribute':
        return cls(
            trait_type=data["trait_type"],
            value=data["value"],
            display_type=data.get("display_type"),
            max_value=data.get("max_value"),
            trait_count=data.get("trait_count"),
        )


@dataclass(frozen=True)
class Creator:
    address: str
    share: Union[int, float]
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        result = dict(self.extra)
        result.update({"address": self.address, "share": self.share})
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Creator':
        extra = {k: v for k, v in data.items() if k not in ("address", "share")}
        return cls(address=data["address"], share=data["share"], extra=extra)


@dataclass(frozen=True)
class Collection:
    name: str
    family: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _omit_none({"name": self.name, "family": self.family})

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Collection':
        return cls(name=data["name"], family=data.get("family"))


@dataclass(frozen=True)
class Properties:
    """The ``properties`` object of a metadata record."""

    files: List[FileDescription] = field(default_factory=list)
    creators: Optional[List[Creator]] = None
    category: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        result = dict(self.extra)
        result["files"] = [f.to_dict() for f in self.files]
        if self.creators is not None:
            result["creators"] = [c.to_dict() for c in self.creators]
        if self.category is not None:
            result["category"] = self.category
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Properties':
        creators = data.get("creators")
        extra = {k: v for k, v in data.items() if k not in ("files", "creators", "category")}
        return cls(
            files=[FileDescription.from_dict(f) for f in data.get("files") or []],
            creators=[Creator.from_dict(c) for c in creators] if creators is not None else None,
            category=data.get("category"),
            extra=extra,
        )


_KNOWN_FIELDS = (
    "name", "symbol", "description", "seller_fee_basis_points", "image",
    "animation_url", "external_url", "attributes", "collection", "properties",
)


@dataclass(frozen=True)
class MetaplexMetadata:
    """
    Metaplex off-chain token metadata.

    Instances are immutable; the linker returns updated copies.
    """

    name: Optional[str] = None
    image: Optional[str] = None
    symbol: Optional[str] = None
    description: Optional[str] = None
    seller_fee_basis_points: Optional[int] = None
    animation_url: Optional[str] = None
    external_url: Optional[str] = None
    attributes: Optional[List[Attribute]] = None
    collection: Optional[Collection] = None
    properties: Properties = field(default_factory=Properties)
    extra: Dict[str, Any] = field(default_factory=dict)

    def with_changes(self, **changes) -> 'MetaplexMetadata':
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the JSON object form, omitting absent fields."""
        result = dict(self.extra)
        result.update(_omit_none({
            "name": self.name,
            "symbol": self.symbol,
            "description": self.description,
            "seller_fee_basis_points": self.seller_fee_basis_points,
            "image": self.image,
            "animation_url": self.animation_url,
            "external_url": self.external_url,
        }))
        if self.attributes is not None:
            result["attributes"] = [a.to_dict() for a in self.attributes]
        if self.collection is not None:
            result["collection"] = self.collection.to_dict()
        result["properties"] = self.properties.to_dict()
        return result

    def to_json(self, indent: Optional[int] = None) -> str:
        if indent is None:
            return json.dumps(self.to_dict(), separators=(",", ":"), ensure_ascii=False)
        return json.dumps(self.to_dict(), indent=indent, ensure_ascii=False)

    def encode(self) -> bytes:
        """Compact UTF-8 JSON bytes, as stored in ``metadata.json``."""
        return self.to_json().encode("utf-8")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MetaplexMetadata':
        """Create metadata from its JSON object form."""
        if not isinstance(data, dict):
            raise MetadataValidationError(f"metadata must be a JSON object, got {type(data).__name__}")

        try:
            attributes = data.get("attributes")
            collection = data.get("collection")
            return cls(
                name=data.get("name"),
                image=data.get("image"),
                symbol=data.get("symbol"),
                description=data.get("description"),
                seller_fee_basis_points=data.get("seller_fee_basis_points"),
                animation_url=data.get("animation_url"),
                external_url=data.get("external_url"),
                attributes=[Attribute.from_dict(a) for a in attributes] if attributes is not None else None,
                collection=Collection.from_dict(collection) if collection is not None else None,
                properties=Properties.from_dict(data.get("properties") or {}),
                extra={k: v for k, v in data.items() if k not in _KNOWN_FIELDS},
            )
        except (KeyError, TypeError, AttributeError) as e:
            raise MetadataValidationError(f"malformed metadata: {e}") from e

    @classmethod
    def from_json(cls, json_str: Union[str, bytes]) -> 'MetaplexMetadata':
        try:
            data = json.loads(json_str)
        except json.JSONDecodeError as e:
            raise MetadataValidationError(f"metadata is not valid JSON: {e}") from e
        return cls.from_dict(data)


_FILE_SCHEMA = {
    "type": "object",
    "required": ["uri", "type"],
    "properties": {
        "uri": {"type": "string"},
        "type": {"type": "string"},
        "cdn": {"type": ["boolean", "null"]},
    },
}

_ATTRIBUTE_SCHEMA = {
    "type": "object",
    "required": ["trait_type", "value"],
    "properties": {
        "trait_type": {"type": "string"},
        "value": {"anyOf": [{"type": "string"}, {"type": "number"}]},
        "display_type": {"type": ["string", "null"]},
        "max_value": {"type": ["number", "null"]},
        "trait_count": {"type": ["number", "null"]},
    },
}

_CREATOR_SCHEMA = {
    "type": "object",
    "required": ["address", "share"],
    "properties": {
        "address": {"type": "string"},
        "share": {"type": "number"},
    },
}

METADATA_SCHEMA = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "Metaplex NFT Metadata",
    "type": "object",
    "required": ["name", "symbol", "seller_fee_basis_points", "image", "properties"],
    "properties": {
        "name": {"type": "string"},
        "symbol": {"type": "string"},
        "description": {"type": ["string", "null"]},
        "seller_fee_basis_points": {"type": "number"},
        "image": {"type": "string"},
        "animation_url": {"type": ["string", "null"]},
        "external_url": {"type": ["string", "null"]},
        "attributes": {
            "type": ["array", "null"],
            "items": _ATTRIBUTE_SCHEMA,
        },
        "properties": {
            "type": "object",
            "required": ["files", "creators"],
            "additionalProperties": True,
            "properties": {
                "files": {"type": "array", "items": _FILE_SCHEMA},
                "category": {"type": ["string", "null"]},
                "creators": {"type": "array", "items": _CREATOR_SCHEMA},
            },
        },
        "collection": {
            "type": ["object", "null"],
            "required": ["name", "family"],
            "properties": {
                "name": {"type": "string"},
                "family": {"type": "string"},
            },
        },
    },
}


class MetadataValidator:
    """Validates raw metadata records against the Metaplex JSON schema."""

    def __init__(self, schema: Optional[Dict[str, Any]] = None):
        self.validator = Draft7Validator(schema or METADATA_SCHEMA)

    def get_validation_errors(self, metadata: Union[Dict[str, Any], MetaplexMetadata]) -> List[str]:
        """
        Get list of validation errors without raising exception.

        Returns:
            List of error messages (empty if valid)
        """
        data = metadata.to_dict() if isinstance(metadata, MetaplexMetadata) else metadata

        errors = []
        for error in sorted(self.validator.iter_errors(data), key=lambda e: list(e.path)):
            error_path = " -> ".join(str(p) for p in error.path) if error.path else "root"
            errors.append(f"{error_path}: {error.message}")
        return errors

    def validate(self, metadata: Union[Dict[str, Any], MetaplexMetadata]) -> MetaplexMetadata:
        """
        Validate metadata and return it as a MetaplexMetadata.

        Raises:
            MetadataValidationError: If the record does not match the schema
        """
        errors = self.get_validation_errors(metadata)
        if errors:
            raise MetadataValidationError(
                "metadata had validation errors:\n" + "\n".join(f"- {e}" for e in errors),
                errors=errors,
            )
        if isinstance(metadata, MetaplexMetadata):
            return metadata
        return MetaplexMetadata.from_dict(metadata)

    def is_valid(self, metadata: Union[Dict[str, Any], MetaplexMetadata]) -> bool:
        return not self.get_validation_errors(metadata)


def ensure_valid_metadata(metadata: Union[Dict[str, Any], MetaplexMetadata]) -> MetaplexMetadata:
    """Validate metadata with the default schema."""
    return MetadataValidator().validate(metadata)


def coerce_metadata(metadata: Union[Dict[str, Any], MetaplexMetadata]) -> MetaplexMetadata:
    if isinstance(metadata, MetaplexMetadata):
        return metadata
    return MetaplexMetadata.from_dict(metadata)
