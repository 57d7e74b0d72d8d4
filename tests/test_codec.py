"""Tests for table compilation and the greedy substitution codec."""
import arcane_text
from arcane_text import MappingTable, compile_tables, decode, encode


def test_single_byte_mapping_encodes_and_decodes():
    """'A' -> 0x01 and back."""
    et, dt = compile_tables(MappingTable({0x41: [0x01]}))

    assert encode("A", et) == b"\x01"
    assert decode(b"\x01", dt) == b"A"


def test_multi_byte_replacement_decodes_then_passes_literal():
    et, dt = compile_tables(MappingTable({0x42: [0x02, 0x03]}))

    assert dt == {"0203": 0x42}
    assert decode(bytes([0x02, 0x03, 0x99]), dt) == bytes([0x42, 0x99])


def test_longest_match_wins():
    # Both "aa" and "aabb" are keys; the two-byte key must be tried first.
    dt = {"aa": 0x31, "aabb": 0x32}
    assert decode(bytes([0xAA, 0xBB]), dt) == b"2"
    assert decode(bytes([0xAA, 0xCC]), dt) == b"1\xcc"


def test_three_byte_match_before_shorter_ones():
    dt = {"01": 0x61, "0102": 0x62, "010203": 0x63}
    assert decode(bytes([1, 2, 3, 1, 2, 1]), dt) == b"cba"


def test_unmatched_bytes_pass_through_one_at_a_time():
    dt = {"0203": 0x42}
    assert decode(bytes([0x02, 0x02, 0x03]), dt) == bytes([0x02, 0x42])
    assert decode(b"", dt) == b""
    assert decode(b"\xff\xfe", {}) == b"\xff\xfe"


def test_encode_passes_unmapped_bytes_and_works_on_raw_bytes():
    et, _ = compile_tables(MappingTable({0x61: [0x7A]}))
    assert encode(b"abc\x00\xff", et) == b"zbc\x00\xff"
    # str input is taken byte by byte from its UTF-8 form
    assert encode("é", {}) == "é".encode("utf-8")


def test_round_trip_with_unique_single_byte_replacements():
    table = MappingTable({b: [(b + 7) % 256] for b in range(256)})
    et, dt = compile_tables(table)
    text = bytes(range(256)) + b"hello world"

    assert decode(encode(text, et), dt) == text


def test_encode_uses_only_first_replacement_byte():
    """Multi-byte mappings are truncated when encoding but matched in full when decoding."""
    et, dt = compile_tables(MappingTable({0x42: [0x02, 0x03]}))

    assert et == {0x42: 0x02}
    assert encode("B", et) == b"\x02"
    assert decode(encode("B", et), dt) == b"\x02"


def test_empty_replacement_encodes_as_zero_and_never_decodes():
    et, dt = compile_tables(MappingTable({0x41: b""}))

    assert encode("A", et) == b"\x00"
    assert decode(b"\x00", dt) == b"\x00"


def test_compile_is_idempotent_and_does_not_patch():
    table = MappingTable({0x41: [0x01], 0x42: [0x02, 0x03]})
    assert compile_tables(table) == compile_tables(table)

    table.set(0x41, [0x05])
    et, dt = compile_tables(table)
    assert "01" not in dt
    assert dt["05"] == 0x41
    assert et[0x41] == 0x05


def test_collision_highest_source_byte_wins(monkeypatch, capsys):
    monkeypatch.setattr(arcane_text, "VERBOSE", True)
    table = MappingTable()
    # insertion order must not matter
    table.set(0x50, [0x09])
    table.set(0x20, [0x09])

    _, dt = compile_tables(table)

    assert dt == {"09": 0x50}
    assert "[WARN]" in capsys.readouterr().err
