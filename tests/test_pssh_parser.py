"""
PSSH parsing tests: version 0/1 payloads, ordering, skipping and truncation.
"""

import itertools

import pytest

from pssh_probe.services.pssh_parser import (
    ParseResult,
    decode_pssh_box,
    parse,
    system_name,
)

from samples import (
    GENERIC_PSSH,
    GENERIC_SYSTEM_ID,
    KEY_ID_1,
    KEY_ID_2,
    OTHER_BOX,
    OVERCOUNTED_GENERIC_PSSH,
    OVERSIZED_DATA_WIDEVINE_PSSH,
    PLAYREADY_PSSH,
    PLAYREADY_SYSTEM_ID,
    TRUNCATED_GENERIC_PSSH,
    TRUNCATED_PLAYREADY_PSSH,
    TRUNCATED_WIDEVINE_PSSH,
    WIDEVINE_PSSH,
    WIDEVINE_SYSTEM_ID,
    ZERO_SIZED_GENERIC_PSSH,
    from_hex,
)

SYSTEM_IDS = {
    WIDEVINE_PSSH: WIDEVINE_SYSTEM_ID,
    PLAYREADY_PSSH: PLAYREADY_SYSTEM_ID,
    GENERIC_PSSH: GENERIC_SYSTEM_ID,
}
KEY_IDS = {
    WIDEVINE_PSSH: [],
    PLAYREADY_PSSH: [],
    GENERIC_PSSH: [KEY_ID_1, KEY_ID_2],
}


class TestSingleBox:
    """Test parsing of a single well-formed box"""

    def test_empty_buffer(self):
        result = parse(b"")
        assert result.system_ids == ()
        assert result.cenc_key_ids == ()

    def test_parses_widevine_pssh(self):
        result = parse(from_hex(WIDEVINE_PSSH))
        assert result.system_ids == (WIDEVINE_SYSTEM_ID,)
        assert result.cenc_key_ids == ()

    def test_parses_playready_pssh(self):
        result = parse(from_hex(PLAYREADY_PSSH))
        assert result.system_ids == (PLAYREADY_SYSTEM_ID,)
        assert result.cenc_key_ids == ()

    def test_parses_generic_cenc_pssh(self):
        """Version 1 boxes should expose their key ids in declared order"""
        result = parse(from_hex(GENERIC_PSSH))
        assert result.system_ids == (GENERIC_SYSTEM_ID,)
        assert result.cenc_key_ids == (KEY_ID_1, KEY_ID_2)

    def test_box_details(self):
        result = parse(from_hex(WIDEVINE_PSSH, GENERIC_PSSH))
        widevine, generic = result.boxes

        assert widevine.version == 0
        assert widevine.data_size == 8
        assert (widevine.start, widevine.end) == (0, 40)
        assert widevine.system_name == "Widevine"

        assert generic.version == 1
        assert generic.key_ids == (KEY_ID_1, KEY_ID_2)
        assert generic.data_size == 0
        assert (generic.start, generic.end) == (40, 108)

    def test_accepts_bytearray_and_memoryview(self):
        data = from_hex(GENERIC_PSSH)
        assert parse(bytearray(data)) == parse(data)
        assert parse(memoryview(data)) == parse(data)


class TestConcatenatedBoxes:
    """Test ordering across several boxes"""

    @pytest.mark.parametrize(
        "order",
        list(itertools.permutations([WIDEVINE_PSSH, PLAYREADY_PSSH, GENERIC_PSSH])),
    )
    def test_parses_concatenated_psshs_in_any_order(self, order):
        result = parse(from_hex(*order))

        assert list(result.system_ids) == [SYSTEM_IDS[box] for box in order]
        assert list(result.cenc_key_ids) == [kid for box in order for kid in KEY_IDS[box]]

    def test_duplicates_are_kept(self):
        result = parse(from_hex(GENERIC_PSSH, GENERIC_PSSH))
        assert result.system_ids == (GENERIC_SYSTEM_ID, GENERIC_SYSTEM_ID)
        assert result.cenc_key_ids == (KEY_ID_1, KEY_ID_2, KEY_ID_1, KEY_ID_2)


class TestSkippingBoxes:
    """Test that non-PSSH boxes are ignored"""

    @pytest.mark.parametrize(
        "boxes",
        [
            [OTHER_BOX, WIDEVINE_PSSH],
            [WIDEVINE_PSSH, OTHER_BOX],
            [PLAYREADY_PSSH, OTHER_BOX, WIDEVINE_PSSH],
            [GENERIC_PSSH, OTHER_BOX, OTHER_BOX, PLAYREADY_PSSH],
        ],
    )
    def test_ignores_non_pssh_boxes_and_continues(self, boxes):
        with_other = parse(from_hex(*boxes))
        without_other = parse(from_hex(*[b for b in boxes if b != OTHER_BOX]))

        assert with_other == without_other
        assert len(with_other.system_ids) == len([b for b in boxes if b != OTHER_BOX])

    def test_decoder_ignores_other_types(self):
        assert decode_pssh_box(b"what", from_hex(WIDEVINE_PSSH)[8:]) is None


class TestZeroSizedBox:
    """Test boxes whose size field is 0"""

    def test_parses_zero_sized_pssh_alone(self):
        assert parse(from_hex(ZERO_SIZED_GENERIC_PSSH)) == parse(from_hex(GENERIC_PSSH))

    def test_parses_zero_sized_pssh_after_other_boxes(self):
        result = parse(from_hex(WIDEVINE_PSSH, ZERO_SIZED_GENERIC_PSSH))

        assert result.system_ids == (WIDEVINE_SYSTEM_ID, GENERIC_SYSTEM_ID)
        assert result.cenc_key_ids == (KEY_ID_1, KEY_ID_2)
        assert result == parse(from_hex(WIDEVINE_PSSH, GENERIC_PSSH))


class TestTruncation:
    """Test that incomplete boxes never contribute partial entries"""

    @pytest.mark.parametrize(
        "truncated",
        [TRUNCATED_WIDEVINE_PSSH, TRUNCATED_PLAYREADY_PSSH, TRUNCATED_GENERIC_PSSH],
    )
    def test_extracts_nothing_from_a_truncated_pssh(self, truncated):
        assert parse(from_hex(truncated)) == ParseResult()

    @pytest.mark.parametrize(
        "complete, truncated",
        [
            (WIDEVINE_PSSH, TRUNCATED_PLAYREADY_PSSH),
            (WIDEVINE_PSSH, TRUNCATED_GENERIC_PSSH),
            (PLAYREADY_PSSH, TRUNCATED_WIDEVINE_PSSH),
            (PLAYREADY_PSSH, TRUNCATED_GENERIC_PSSH),
            (GENERIC_PSSH, TRUNCATED_WIDEVINE_PSSH),
            (GENERIC_PSSH, TRUNCATED_PLAYREADY_PSSH),
        ],
    )
    def test_retains_data_from_complete_boxes(self, complete, truncated):
        result = parse(from_hex(complete, truncated))

        assert result.system_ids == (SYSTEM_IDS[complete],)
        assert list(result.cenc_key_ids) == KEY_IDS[complete]

    def test_truncation_stops_the_scan(self):
        """Bytes after a truncated box header are never reinterpreted"""
        result = parse(from_hex(WIDEVINE_PSSH, "00000100", "70737368", PLAYREADY_PSSH))
        assert result.system_ids == (WIDEVINE_SYSTEM_ID,)

    def test_undersized_box_stops_the_scan(self):
        result = parse(from_hex(WIDEVINE_PSSH, "00000004", "70737368", PLAYREADY_PSSH))
        assert result.system_ids == (WIDEVINE_SYSTEM_ID,)


class TestMalformedBody:
    """Test PSSH boxes whose fields overrun their own body"""

    def test_overcounted_key_ids_drop_only_that_box(self):
        result = parse(from_hex(OVERCOUNTED_GENERIC_PSSH, WIDEVINE_PSSH))

        assert result.system_ids == (WIDEVINE_SYSTEM_ID,)
        assert result.cenc_key_ids == ()

    def test_oversized_data_drops_only_that_box(self):
        result = parse(from_hex(PLAYREADY_PSSH, OVERSIZED_DATA_WIDEVINE_PSSH, GENERIC_PSSH))

        assert result.system_ids == (PLAYREADY_SYSTEM_ID, GENERIC_SYSTEM_ID)
        assert result.cenc_key_ids == (KEY_ID_1, KEY_ID_2)

    def test_body_too_short_for_system_id(self):
        assert decode_pssh_box(b"pssh", b"\x00\x00\x00\x00" + b"\x01" * 10) is None

    def test_huge_key_id_count(self):
        body = from_hex(GENERIC_PSSH)[8:28] + b"\xff\xff\xff\xff"
        assert decode_pssh_box(b"pssh", body) is None


class TestSystemName:
    def test_known_and_unknown_ids(self):
        assert system_name(PLAYREADY_SYSTEM_ID) == "PlayReady"
        assert system_name(GENERIC_SYSTEM_ID.upper()) == "Common"
        assert system_name("00" * 16) is None
