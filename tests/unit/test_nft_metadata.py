"""
Tests for Metaplex metadata structures and schema validation
"""

import json

import pytest

from nft.exceptions import MetadataValidationError
from nft.metadata import (
    Attribute,
    FileDescription,
    MetadataValidator,
    MetaplexMetadata,
    coerce_metadata,
    ensure_valid_metadata,
)


class TestMetaplexMetadata:
    """Test metadata parsing and serialization."""

    def test_from_dict(self, sample_metadata):
        metadata = MetaplexMetadata.from_dict(sample_metadata)

        assert metadata.name == "Test Token #0"
        assert metadata.seller_fee_basis_points == 500
        assert metadata.attributes[1] == Attribute(trait_type="Level", value=3)
        assert metadata.properties.files == [FileDescription(uri="token.png", type="image/png")]
        assert metadata.properties.creators[0].share == 100
        assert metadata.collection.family == "Tests"

    def test_round_trip(self, sample_metadata):
        assert MetaplexMetadata.from_dict(sample_metadata).to_dict() == sample_metadata

    def test_unknown_fields_preserved(self, sample_metadata):
        record = dict(sample_metadata, edition=7)
        record["properties"] = dict(sample_metadata["properties"], maxSupply=10)
        record["properties"]["files"] = [{"uri": "token.png", "type": "image/png", "width": 512}]

        assert MetaplexMetadata.from_dict(record).to_dict() == record

    def test_absent_fields_omitted(self):
        metadata = MetaplexMetadata(name="Only a name")
        assert metadata.to_dict() == {"name": "Only a name", "properties": {"files": []}}

    def test_encode_is_compact_json(self, sample_metadata):
        encoded = MetaplexMetadata.from_dict(sample_metadata).encode()
        assert b": " not in encoded
        assert json.loads(encoded) == sample_metadata

    def test_unicode_preserved(self):
        metadata = MetaplexMetadata(name="Ünïcödé ✨")
        assert "Ünïcödé ✨".encode("utf-8") in metadata.encode()

    def test_from_json(self, sample_metadata):
        metadata = MetaplexMetadata.from_json(json.dumps(sample_metadata))
        assert metadata.symbol == "TEST"

    def test_with_changes_returns_copy(self, sample_metadata):
        metadata = MetaplexMetadata.from_dict(sample_metadata)
        changed = metadata.with_changes(name="Renamed")

        assert changed.name == "Renamed"
        assert metadata.name == "Test Token #0"

    @pytest.mark.parametrize("value", ["not an object", ["list"], None])
    def test_non_object_rejected(self, value):
        with pytest.raises(MetadataValidationError):
            MetaplexMetadata.from_dict(value)

    def test_malformed_nested_field(self, sample_metadata):
        record = dict(sample_metadata, attributes=[{"value": "missing trait type"}])
        with pytest.raises(MetadataValidationError):
            MetaplexMetadata.from_dict(record)

    def test_invalid_json(self):
        with pytest.raises(MetadataValidationError):
            MetaplexMetadata.from_json("{not json")

    def test_coerce_metadata(self, sample_metadata):
        metadata = MetaplexMetadata.from_dict(sample_metadata)
        assert coerce_metadata(metadata) is metadata
        assert coerce_metadata(sample_metadata) == metadata


class TestMetadataValidator:
    """Test JSON schema validation."""

    def test_valid_metadata(self, sample_metadata):
        validator = MetadataValidator()
        assert validator.is_valid(sample_metadata)
        assert validator.validate(sample_metadata) == MetaplexMetadata.from_dict(sample_metadata)

    def test_missing_required_fields(self, sample_metadata):
        record = dict(sample_metadata)
        del record["symbol"]
        del record["seller_fee_basis_points"]

        errors = MetadataValidator().get_validation_errors(record)
        assert any("symbol" in error for error in errors)
        assert any("seller_fee_basis_points" in error for error in errors)

    def test_wrong_types_reported_with_path(self, sample_metadata):
        record = dict(sample_metadata)
        record["properties"] = dict(sample_metadata["properties"], files=[{"uri": 5, "type": "image/png"}])

        errors = MetadataValidator().get_validation_errors(record)
        assert errors == ["properties -> files -> 0 -> uri: 5 is not of type 'string'"]

    def test_ensure_valid_metadata_raises(self, sample_metadata):
        record = dict(sample_metadata, name=None)

        with pytest.raises(MetadataValidationError) as exc_info:
            ensure_valid_metadata(record)
        assert exc_info.value.errors
        assert exc_info.value.stage == "packaging"

    def test_validates_metadata_objects(self, sample_metadata):
        metadata = MetaplexMetadata.from_dict(sample_metadata)
        assert ensure_valid_metadata(metadata) is metadata

    def test_parsing_does_not_require_schema_fields(self):
        # Only validation enforces the schema
        metadata = MetaplexMetadata.from_dict({"image": "a.png"})
        assert metadata.name is None
        assert not MetadataValidator().is_valid(metadata)
