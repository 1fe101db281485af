"""Tests for pairing code encoding."""

import base64
import json

import pytest

from ourmem.errors import InvalidFormatError, ValidationError
from ourmem.formatting import format_pairing_code
from ourmem.pairing import PairingCodec, PairingPayload

NOW_MS = 1_700_000_000_000


def make_payload(**overrides) -> PairingPayload:
    fields = dict(
        couple_id="c1",
        partner_a_name="Alex",
        partner_b_name="Sam",
        love_date="2020-02-14",
        story_start="2019-06-01",
        pairing_token="ab" * 32,
        timestamp=NOW_MS,
    )
    fields.update(overrides)
    return PairingPayload(**fields)


def encode_raw(data) -> str:
    raw = json.dumps(data).encode("utf-8")
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


@pytest.fixture
def codec():
    return PairingCodec(clock_ms=lambda: NOW_MS)


class TestEncode:
    """Test pairing code encoding."""

    def test_round_trip(self, codec):
        """Decoding an encoded payload gives it back unchanged."""
        payload = make_payload(cover_title="Us")
        assert codec.decode(codec.encode(payload)) == payload

    def test_code_is_unpadded_urlsafe(self, codec):
        """Codes are safe in URLs and QR codes."""
        code = codec.encode(make_payload(partner_a_name="Zoë ✨"))

        assert "=" not in code
        assert "+" not in code
        assert "/" not in code

    def test_wire_field_names(self, codec):
        """The JSON inside uses the web client's camelCase names."""
        code = codec.encode(make_payload())
        data = json.loads(base64.urlsafe_b64decode(code + "=" * (-len(code) % 4)))

        assert set(data) == {
            "coupleId",
            "partnerAName",
            "partnerBName",
            "coverTitle",
            "loveDate",
            "storyStart",
            "pairingToken",
            "timestamp",
        }

    def test_default_cover_title(self):
        """Cover title defaults to 'Our Memories'."""
        payload = make_payload()
        assert payload.cover_title == "Our Memories"

    def test_empty_cover_title_round_trips(self, codec):
        """An empty title encodes as the default and decodes to an equal payload."""
        payload = make_payload(cover_title="")

        decoded = codec.decode(codec.encode(payload))

        assert payload.cover_title == "Our Memories"
        assert decoded == payload

    def test_float_timestamp_round_trips(self, codec):
        """A float timestamp is written as integer milliseconds."""
        payload = make_payload(timestamp=NOW_MS + 0.75)

        code = codec.encode(payload)
        decoded = codec.decode(code)

        assert isinstance(payload.to_dict()["timestamp"], int)
        assert decoded.timestamp == NOW_MS
        assert decoded == payload


class TestDecode:
    """Test pairing code decoding."""

    def test_grouped_code_decodes(self, codec):
        """Whitespace from display grouping is ignored."""
        payload = make_payload()
        grouped = format_pairing_code(codec.encode(payload))

        assert codec.decode(grouped) == payload

    def test_padded_code_decodes(self, codec):
        """Codes with base64 padding are accepted."""
        raw = json.dumps(make_payload().to_dict()).encode("utf-8")
        padded = base64.urlsafe_b64encode(raw).decode("ascii")

        assert codec.decode(padded).couple_id == "c1"

    @pytest.mark.parametrize("code", ["", "   ", "!!!not-base64!!!", "bm90IGpzb24"])
    def test_garbage_rejected(self, codec, code):
        """Empty, non-base64 and non-JSON codes are invalid."""
        with pytest.raises(InvalidFormatError):
            codec.decode(code)

    def test_non_object_rejected(self, codec):
        """A JSON array is not a pairing code."""
        with pytest.raises(InvalidFormatError):
            codec.decode(encode_raw(["coupleId"]))

    def test_missing_field_rejected(self, codec):
        """Every required field must be present."""
        data = make_payload().to_dict()
        del data["pairingToken"]

        with pytest.raises(InvalidFormatError, match="pairingToken"):
            codec.decode(encode_raw(data))

    def test_bad_timestamp_rejected(self, codec):
        """Timestamp must be an integer."""
        data = make_payload().to_dict()
        data["timestamp"] = "yesterday"

        with pytest.raises(InvalidFormatError):
            codec.decode(encode_raw(data))

    def test_missing_cover_title_defaults(self, codec):
        """Codes without a cover title get the default."""
        data = make_payload().to_dict()
        del data["coverTitle"]

        assert codec.decode(encode_raw(data)).cover_title == "Our Memories"

    def test_invalid_format_is_validation_error(self, codec):
        """Malformed codes map to a 400 class error."""
        with pytest.raises(ValidationError):
            codec.decode("")


class TestStaleness:
    """Test the advisory age check."""

    def test_fresh_code(self, codec):
        """A code from an hour ago is fresh."""
        payload = make_payload(timestamp=NOW_MS - 60 * 60 * 1000)
        assert codec.is_stale(payload) is False

    def test_stale_code_still_decodes(self, codec):
        """Old codes decode; the relay enforces the real expiry."""
        payload = make_payload(timestamp=NOW_MS - 25 * 60 * 60 * 1000)

        assert codec.is_stale(payload) is True
        assert codec.decode(codec.encode(payload)) == payload

    def test_no_timestamp_never_stale(self, codec):
        """Codes without a timestamp are not judged."""
        assert codec.is_stale(make_payload(timestamp=None)) is False
