"""Tests for the .sdc binary framing and header parsing."""

from __future__ import annotations

import json
import struct

import pytest

from sdcvault.core.errors import FormatError
from sdcvault.core.sdc import (
    FILE_FORMAT_VERSION,
    FLAG_ENCRYPTED,
    HEADER_SIZE,
    MAGIC_BYTES,
    SDCEnvelope,
)
from sdcvault.core.sdc.service import DocumentInfo, SDCExportOptions

_PREFIX = struct.Struct("<4sHHIQ")


def split_frame(raw: bytes):
    magic, version, flags, header_len, data_len = _PREFIX.unpack_from(raw)
    header = json.loads(raw[HEADER_SIZE:HEADER_SIZE + header_len])
    payload = raw[HEADER_SIZE + header_len:]
    return magic, version, flags, header, payload


def build_frame(header, payload: bytes, magic=MAGIC_BYTES, version=FILE_FORMAT_VERSION, flags=None) -> bytes:
    header_json = json.dumps(header).encode("utf-8")
    if flags is None:
        flags = FLAG_ENCRYPTED if header["metadata"]["security"]["encrypted"] else 0
    return _PREFIX.pack(magic, version, flags, len(header_json), len(payload)) + header_json + payload


@pytest.fixture
def created(sdc_service):
    return sdc_service.create_sdc_file(
        b"quarterly numbers",
        "report.pdf",
        DocumentInfo(title="Q3 Report", author="Finance", tags=("q3", "internal")),
        SDCExportOptions(max_views=3),
    )


@pytest.fixture
def raw(created):
    return created.envelope.to_bytes()


class TestFraming:
    def test_prefix_layout(self, raw, created):
        magic, version, flags, header, payload = split_frame(raw)

        assert magic == MAGIC_BYTES
        assert version == FILE_FORMAT_VERSION
        assert flags == FLAG_ENCRYPTED
        assert header["fileId"] == created.envelope.id
        assert payload == created.envelope.encrypted_data

    def test_header_never_contains_private_key(self, raw, created):
        assert created.private_key.encode("ascii") not in raw

    def test_parse_restores_envelope(self, raw, created):
        parsed = SDCEnvelope.from_bytes(raw)
        original = created.envelope

        assert parsed.id == original.id
        assert parsed.name == "report.sdc"
        assert parsed.original_format == "pdf"
        assert parsed.public_key == original.public_key
        assert parsed.encrypted_data == original.encrypted_data
        assert parsed.key_slots == original.key_slots
        assert parsed.seal == original.seal
        assert parsed.metadata.title == "Q3 Report"
        assert parsed.metadata.tags == ["q3", "internal"]
        assert parsed.metadata.access.max_views == 3
        assert parsed.created_at == original.created_at
        assert parsed.bound_header() == original.bound_header()

    def test_unencrypted_payload_is_plaintext(self, sdc_service):
        created = sdc_service.create_sdc_file(
            b"public notice", "notice.txt", options=SDCExportOptions(encryption_enabled=False)
        )
        magic, version, flags, header, payload = split_frame(created.envelope.to_bytes())

        assert flags == 0
        assert payload == b"public notice"
        assert header["keySlots"] == []

    def test_save_and_load(self, tmp_path, created):
        path = created.envelope.save(tmp_path / "out" / "report.sdc")
        assert SDCEnvelope.load(path).id == created.envelope.id


class TestRejection:
    def test_empty(self):
        with pytest.raises(FormatError):
            SDCEnvelope.from_bytes(b"")

    def test_not_bytes(self):
        with pytest.raises(FormatError):
            SDCEnvelope.from_bytes("SDC\x01")

    def test_bad_magic(self, raw):
        with pytest.raises(FormatError, match="magic"):
            SDCEnvelope.from_bytes(b"PDF\x01" + raw[4:])

    def test_unknown_version(self, raw):
        _, _, flags, header, payload = split_frame(raw)
        with pytest.raises(FormatError, match="version"):
            SDCEnvelope.from_bytes(build_frame(header, payload, version=2, flags=flags))

    def test_truncated(self, raw):
        with pytest.raises(FormatError, match="truncated"):
            SDCEnvelope.from_bytes(raw[:-1])

    def test_trailing_bytes(self, raw):
        with pytest.raises(FormatError, match="trailing"):
            SDCEnvelope.from_bytes(raw + b"\x00")

    def test_oversized_header_length(self, raw):
        forged = _PREFIX.pack(MAGIC_BYTES, FILE_FORMAT_VERSION, FLAG_ENCRYPTED, 2 * 1024 * 1024, 0)
        with pytest.raises(FormatError, match="too large"):
            SDCEnvelope.from_bytes(forged)

    def test_header_not_json(self):
        body = b"not json"
        forged = _PREFIX.pack(MAGIC_BYTES, FILE_FORMAT_VERSION, 0, len(body), 0) + body
        with pytest.raises(FormatError, match="JSON"):
            SDCEnvelope.from_bytes(forged)

    def test_header_wrong_shape(self):
        body = b"[1, 2, 3]"
        forged = _PREFIX.pack(MAGIC_BYTES, FILE_FORMAT_VERSION, 0, len(body), 0) + body
        with pytest.raises(FormatError, match="Malformed"):
            SDCEnvelope.from_bytes(forged)

    def test_missing_field(self, raw):
        _, _, _, header, payload = split_frame(raw)
        del header["publicKey"]
        with pytest.raises(FormatError, match="Malformed"):
            SDCEnvelope.from_bytes(build_frame(header, payload))

    def test_boolean_max_views(self, raw):
        _, _, _, header, payload = split_frame(raw)
        header["metadata"]["access"]["maxViews"] = True
        with pytest.raises(FormatError):
            SDCEnvelope.from_bytes(build_frame(header, payload))

    def test_zero_max_views(self, raw):
        _, _, _, header, payload = split_frame(raw)
        header["metadata"]["access"]["maxViews"] = 0
        with pytest.raises(FormatError):
            SDCEnvelope.from_bytes(build_frame(header, payload))

    def test_flags_disagree_with_metadata(self, raw):
        _, _, _, header, payload = split_frame(raw)
        with pytest.raises(FormatError, match="flags"):
            SDCEnvelope.from_bytes(build_frame(header, payload, flags=0))

    def test_encrypted_without_slots(self, raw):
        _, _, _, header, payload = split_frame(raw)
        header["keySlots"] = []
        with pytest.raises(FormatError):
            SDCEnvelope.from_bytes(build_frame(header, payload))

    def test_bad_base64(self, raw):
        _, _, _, header, payload = split_frame(raw)
        header["nonce"] = "***"
        with pytest.raises(FormatError):
            SDCEnvelope.from_bytes(build_frame(header, payload))


class TestBinding:
    def test_bound_header_covers_limits(self, created):
        envelope = created.envelope.copy()
        before = envelope.bound_header()
        envelope.metadata.access.max_views = 100
        assert envelope.bound_header() != before

    def test_bound_header_ignores_view_count(self, created):
        envelope = created.envelope.copy()
        before = envelope.bound_header()
        envelope.metadata.access.view_count = 2
        assert envelope.bound_header() == before

    def test_copy_is_independent(self, created):
        clone = created.envelope.copy()
        clone.metadata.access.view_count = 2
        clone.metadata.tags.append("extra")
        assert created.envelope.metadata.access.view_count == 0
        assert "extra" not in created.envelope.metadata.tags

    def test_repr_hides_payload(self, created):
        text = repr(created.envelope)
        assert created.envelope.id in text
        assert created.envelope.public_key not in text
