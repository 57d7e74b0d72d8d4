#!/usr/bin/env python3
import sys
import argparse
import json
import re
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, NamedTuple, Optional, Tuple, Union

__version__ = "1.0"

# Longest replacement sequence tried when decoding
MAX_MATCH_LENGTH = 3
DEFAULT_INDENT = 2
PRINTABLE_RANGE = (32, 126)

# Verbose mode (disabled by default, enabled with --verbose)
VERBOSE = False

def log_info(msg: str):
    """Print info message only if verbose mode is enabled."""
    if VERBOSE:
        print(f"[INFO] {msg}", file=sys.stderr)

def log_warn(msg: str):
    """Print warning message only if verbose mode is enabled."""
    if VERBOSE:
        print(f"[WARN] {msg}", file=sys.stderr)

# ==========================================
#  ERRORS
# ==========================================

class ArcaneTextError(Exception):
    """Base class for load, save and file I/O failures."""

class ParseError(ArcaneTextError):
    """Mapping document is absent, is not valid JSON, or holds a malformed value."""

class InvalidKeyError(ParseError):
    """A mapping key is not exactly two hex digits (a byte 0x00-0xFF)."""

class MappingFileNotFound(ParseError):
    """Mapping document does not exist."""

class FileUnreadableError(ArcaneTextError):
    """OS-level failure while reading or writing a file."""

# ==========================================
#  HEX HELPERS
# ==========================================

_KEY_PATTERN = re.compile(r"[0-9a-fA-F]{2}")
_SEQUENCE_PATTERN = re.compile(r"0[xX]((?:[0-9a-fA-F]{2})*)")

def format_byte_key(byte: int) -> str:
    return f"{byte:02x}"

def parse_byte_key(key: str) -> int:
    """Parse a two-hex-digit JSON key ("41", "Ff") into a byte value."""
    if not isinstance(key, str) or not _KEY_PATTERN.fullmatch(key):
        raise InvalidKeyError(f"Invalid mapping key {key!r}: expected two hex digits.")
    return int(key, 16)

def format_hex_sequence(sequence: Iterable[int]) -> str:
    return "0x" + "".join(f"{b:02X}" for b in sequence)

def parse_hex_sequence(text: str) -> bytes:
    """
    Parse a replacement value of the form 0x followed by hex pairs.

    "0x0203" -> b"\\x02\\x03". A bare "0x" yields an empty sequence.
    Anything else (odd digit count, non-hex digits, missing prefix) raises ParseError.
    """
    if not isinstance(text, str):
        raise ParseError(f"Invalid mapping value {text!r}: expected a string.")
    match = _SEQUENCE_PATTERN.fullmatch(text.strip())
    if not match:
        raise ParseError(f"Invalid mapping value {text!r}: expected 0x followed by hex byte pairs.")
    return bytes.fromhex(match.group(1))

def sequence_key(sequence: Iterable[int]) -> str:
    """Lowercase concatenated hex used to look a sequence up in a DecodeTable."""
    return bytes(sequence).hex()

def _check_byte(byte: int) -> int:
    if not isinstance(byte, int) or isinstance(byte, bool) or not 0 <= byte <= 0xFF:
        raise InvalidKeyError(f"Invalid source byte {byte!r}: expected 0-255.")
    return byte

def _check_replacement(replacement: Iterable[int]) -> bytes:
    # bytes(3) would silently build three zero bytes
    if isinstance(replacement, (int, str)):
        raise ParseError(f"Invalid replacement {replacement!r}: expected a sequence of byte values.")
    try:
        return bytes(replacement)
    except (TypeError, ValueError) as e:
        raise ParseError(f"Invalid replacement {replacement!r}: {e}") from e

# ==========================================
#  MAPPING TABLE
# ==========================================

class MappingTable:
    """
    Association of source bytes (0-255) to replacement byte sequences.

    Iteration is always in ascending source-byte order so that anything
    derived from the table (compiled lookups, saved JSON) is reproducible.
    """

    def __init__(self, entries: Optional[Dict[int, Iterable[int]]] = None):
        self._entries: Dict[int, bytes] = {}
        if entries:
            for byte, replacement in entries.items():
                self.set(byte, replacement)

    def set(self, byte: int, replacement: Iterable[int]):
        """Map one source byte to a replacement sequence (a single user edit)."""
        self._entries[_check_byte(byte)] = _check_replacement(replacement)

    def set_hex(self, byte: int, text: str):
        """Same as set(), taking the replacement in its 0x.. written form."""
        self.set(byte, parse_hex_sequence(text))

    def get(self, byte: int, default: Optional[bytes] = None) -> Optional[bytes]:
        return self._entries.get(byte, default)

    def __getitem__(self, byte: int) -> bytes:
        return self._entries[byte]

    def __contains__(self, byte) -> bool:
        return byte in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[int]:
        return iter(sorted(self._entries))

    def __eq__(self, other) -> bool:
        if not isinstance(other, MappingTable):
            return NotImplemented
        return self._entries == other._entries

    def __repr__(self) -> str:
        return f"MappingTable({self.to_dict()!r})"

    def items(self) -> List[Tuple[int, bytes]]:
        return [(byte, self._entries[byte]) for byte in self]

    def copy(self) -> "MappingTable":
        table = MappingTable()
        table._entries = dict(self._entries)
        return table

    def update(self, other: "MappingTable"):
        """Merge in place: entries of `other` override ours, our other keys are kept."""
        for byte, replacement in other.items():
            self._entries[byte] = replacement

    def ensure_default(self, byte: int) -> bool:
        """
        Give `byte` an identity mapping (byte -> [byte]) if it has none yet.

        Returns True when a new entry was created.
        """
        if byte in self._entries:
            return False
        self.set(byte, [byte])
        return True

    @classmethod
    def from_dict(cls, document) -> "MappingTable":
        """Build a table from the JSON object form {"41": "0x01", ...}."""
        if not isinstance(document, dict):
            raise ParseError(f"Mapping document must be a JSON object, got {type(document).__name__}.")
        table = cls()
        for key, value in document.items():
            byte = parse_byte_key(key)
            replacement = parse_hex_sequence(value)
            if not replacement:
                log_warn(f"Mapping for 0x{byte:02X} is empty; it encodes as 0x00.")
            table.set(byte, replacement)
        return table

    def to_dict(self) -> Dict[str, str]:
        return {format_byte_key(byte): format_hex_sequence(seq) for byte, seq in self.items()}

    @classmethod
    def load(cls, path: Union[str, Path]) -> "MappingTable":
        """
        Read a mapping table from a JSON file.

        Raises:
            MappingFileNotFound: the file does not exist
            FileUnreadableError: the file exists but cannot be read
            ParseError: invalid UTF-8 or JSON, or a malformed value
            InvalidKeyError: a key that is not two hex digits
        """
        path = Path(path)
        try:
            with open(path, "r", encoding="utf-8") as f:
                document = json.load(f)
        except FileNotFoundError as e:
            raise MappingFileNotFound(f"Mapping file '{path}' not found.") from e
        except json.JSONDecodeError as e:
            raise ParseError(f"Mapping file '{path}' is not valid JSON: {e}") from e
        except UnicodeDecodeError as e:
            raise ParseError(f"Mapping file '{path}' is not valid UTF-8 JSON: {e}") from e
        except OSError as e:
            raise FileUnreadableError(f"Cannot read mapping file '{path}': {e}") from e

        table = cls.from_dict(document)
        log_info(f"Loaded {len(table)} mapping(s) from {path}")
        return table

    def save(self, path: Union[str, Path]):
        """Write the table as a flat JSON object, keys ascending."""
        path = Path(path)
        try:
            with open(path, "w", encoding="utf-8") as f:
                json.dump(self.to_dict(), f, indent=DEFAULT_INDENT)
                f.write("\n")
        except OSError as e:
            raise FileUnreadableError(f"Cannot write mapping file '{path}': {e}") from e
        log_info(f"Saved {len(self)} mapping(s) to {path}")


def load(path: Union[str, Path]) -> MappingTable:
    return MappingTable.load(path)

def save(path: Union[str, Path], table: MappingTable):
    table.save(path)

def merge(existing: MappingTable, loaded: MappingTable) -> MappingTable:
    """Return existing ∪ loaded; loaded wins on shared keys. Neither input is modified."""
    merged = existing.copy()
    merged.update(loaded)
    return merged

def ensure_default(table: MappingTable, byte: int) -> bool:
    return table.ensure_default(byte)

# ==========================================
#  SMART MAPPING: Byte inventory & display rows
# ==========================================

class MappingRow(NamedTuple):
    display_char: str
    source_hex: str
    replacement_hex: str


def _is_printable(byte: int) -> bool:
    return PRINTABLE_RANGE[0] <= byte <= PRINTABLE_RANGE[1]

def _display_order(byte: int) -> int:
    # Non-printables share key 0 and keep their relative order.
    return ord(chr(byte).lower()) if _is_printable(byte) else 0

def _as_bytes(text: Union[bytes, bytearray, str]) -> bytes:
    if isinstance(text, str):
        return text.encode("utf-8")
    return bytes(text)

def unique_bytes(text: Union[bytes, str], table: Optional[MappingTable] = None) -> List[int]:
    """
    Distinct bytes of `text` followed by any keys already in `table`,
    ordered case-insensitively by their printable character.
    """
    seen = set()
    ordered = []
    for byte in _as_bytes(text):
        if byte not in seen:
            seen.add(byte)
            ordered.append(byte)
    if table is not None:
        for byte in table:
            if byte not in seen:
                seen.add(byte)
                ordered.append(byte)
    return sorted(ordered, key=_display_order)

def smart_mapping(text: Union[bytes, str], table: MappingTable) -> List[int]:
    """Give every byte in `text` at least an identity mapping; return the display order."""
    order = unique_bytes(text, table)
    added = sum(1 for byte in order if table.ensure_default(byte))
    if added:
        log_info(f"Added {added} identity mapping(s).")
    return order

def mapping_rows(table: MappingTable, order: Optional[Iterable[int]] = None) -> List[MappingRow]:
    rows = []
    for byte in (table if order is None else order):
        replacement = table.get(byte, bytes([byte]))
        rows.append(MappingRow(
            display_char=chr(byte) if _is_printable(byte) else ".",
            source_hex=f"0x{byte:02X}",
            replacement_hex=format_hex_sequence(replacement),
        ))
    return rows

# ==========================================
#  MAP COMPILER
# ==========================================

EncodeTable = Dict[int, int]
DecodeTable = Dict[str, int]

def compile_tables(table: MappingTable) -> Tuple[EncodeTable, DecodeTable]:
    """
    Derive fresh lookup tables from a MappingTable.

    EncodeTable maps a source byte to the FIRST byte of its replacement only
    (an empty replacement encodes as 0x00). DecodeTable maps the hex of the
    full replacement sequence back to the source byte. This asymmetry means a
    multi-byte mapping will not round-trip; it is kept for compatibility with
    existing encoded files.

    Entries are visited in ascending source-byte order, so when two source
    bytes share a replacement the higher one owns the decode key.
    """
    encode_table: EncodeTable = {}
    decode_table: DecodeTable = {}
    for byte, replacement in table.items():
        encode_table[byte] = replacement[0] if replacement else 0
        if len(replacement) > 1:
            log_warn(f"Mapping for 0x{byte:02X} has {len(replacement)} bytes; encode uses only the first.")
        key = sequence_key(replacement)
        if key in decode_table:
            log_warn(f"Replacement 0x{key.upper()} is shared by 0x{decode_table[key]:02X} and 0x{byte:02X}; "
                     f"decoding yields 0x{byte:02X}.")
        decode_table[key] = byte
    return encode_table, decode_table

# ==========================================
#  CODEC
# ==========================================

def encode(text: Union[bytes, str], encode_table: EncodeTable) -> bytes:
    """
    Substitute every byte of `text` through `encode_table`.

    A str is taken as its UTF-8 bytes; each byte is handled on its own.
    Unmapped bytes pass through unchanged.
    """
    return bytes(encode_table.get(byte, byte) for byte in _as_bytes(text))

def decode(raw: bytes, decode_table: DecodeTable) -> bytes:
    """
    Greedy longest-match decode.

    At each position try the next 3, 2, then 1 bytes against `decode_table`;
    the first hit emits its source byte and skips the matched bytes. With no
    hit the raw byte is copied through and the cursor moves by one.
    """
    raw = bytes(raw)
    out = bytearray()
    i = 0
    size = len(raw)
    while i < size:
        for length in range(MAX_MATCH_LENGTH, 0, -1):
            if i + length > size:
                continue
            source = decode_table.get(raw[i:i + length].hex())
            if source is not None:
                out.append(source)
                i += length
                break
        else:
            out.append(raw[i])
            i += 1
    return bytes(out)

# ==========================================
#  SESSION: Editor-facing document state
# ==========================================

class Session:
    """
    Everything an editor front-end needs: the mapping table, its compiled
    lookups, the raw bytes of the last opened file and the current text.

    Every mutation of the table goes through here and triggers a full recompile.
    """

    def __init__(self, table: Optional[MappingTable] = None):
        self.table = table if table is not None else MappingTable()
        self.raw: Optional[bytes] = None
        self.text: bytes = b""
        self.encode_table: EncodeTable = {}
        self.decode_table: DecodeTable = {}
        self.recompile()

    def recompile(self):
        self.encode_table, self.decode_table = compile_tables(self.table)

    def set_text(self, text: Union[bytes, str]):
        self.text = _as_bytes(text)

    def set_mapping(self, byte: int, hex_text: str):
        self.table.set_hex(byte, hex_text)
        self.recompile()

    def import_mapping(self, path: Union[str, Path]):
        """Load a mapping file and merge it over the current table."""
        self.table = merge(self.table, load(path))
        self.recompile()

    def export_mapping(self, path: Union[str, Path]):
        save(path, self.table)

    def generate_smart_mapping(self) -> List[MappingRow]:
        order = smart_mapping(self.text, self.table)
        self.recompile()
        return mapping_rows(self.table, order)

    def encode(self) -> bytes:
        return encode(self.text, self.encode_table)

    def decode(self, raw: bytes) -> bytes:
        self.raw = bytes(raw)
        self.recompile()
        self.text = decode(self.raw, self.decode_table)
        return self.text

    def redecode(self) -> Optional[bytes]:
        """Decode the last opened file again, e.g. after the mapping changed."""
        if not self.raw:
            return None
        return self.decode(self.raw)

    def open_file(self, path: Union[str, Path]) -> bytes:
        self.decode(_read_bytes(path))
        log_info(f"Decoded {len(self.raw)} byte(s) from {path} into {len(self.text)} character(s)")
        return self.text

    def save_file(self, path: Union[str, Path]) -> bytes:
        data = self.encode()
        _write_bytes(path, data)
        log_info(f"Wrote {len(data)} encoded byte(s) to {path}")
        return data


def _read_bytes(path: Union[str, Path]) -> bytes:
    try:
        with open(path, "rb") as f:
            return f.read()
    except FileNotFoundError as e:
        raise FileUnreadableError(f"File '{path}' not found.") from e
    except OSError as e:
        raise FileUnreadableError(f"Cannot read '{path}': {e}") from e

def _write_bytes(path: Union[str, Path], data: bytes):
    try:
        with open(path, "wb") as f:
            f.write(data)
    except OSError as e:
        raise FileUnreadableError(f"Cannot write '{path}': {e}") from e

# ==========================================
#  CLI LOGIC
# ==========================================

def parse_assignment(value: str) -> Tuple[int, str]:
    """argparse type for --set XX=0xYYYY."""
    key, sep, hex_text = value.partition("=")
    if not sep:
        raise argparse.ArgumentTypeError(f"expected XX=0xYY, got '{value}'")
    try:
        byte = parse_byte_key(key.strip())
        parse_hex_sequence(hex_text)
    except ParseError as e:
        raise argparse.ArgumentTypeError(str(e)) from e
    return byte, hex_text.strip()


def print_rows(rows: List[MappingRow]):
    print(f"  {'CHR':<4} {'BYTE':<6} MAPPING")
    print("=" * 40)
    for row in rows:
        print(f"  {row.display_char:<4} {row.source_hex:<6} {row.replacement_hex}")
    print("=" * 40)
    print(f"\nTotal: {len(rows)} mapping(s).")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="arcane-text",
        description="ArcaneText byte substitution codec",
        formatter_class=argparse.RawTextHelpFormatter
    )

    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    # Main action group
    action_group = parser.add_mutually_exclusive_group(required=True)
    action_group.add_argument("-e", "--encode", action="store_true", help="Encode text into substituted bytes")
    action_group.add_argument("-d", "--decode", action="store_true", help="Decode substituted bytes back into text")
    action_group.add_argument("-s", "--show-map", action="store_true", help="Print the current mapping table")
    action_group.add_argument("--smart-map", action="store_true",
                              help="Add identity mappings for every byte of the input and print the table")

    # Mapping options
    parser.add_argument("-m", "--map", action="append", default=[], metavar="PATH",
                        help="JSON mapping file (repeatable, later files override earlier ones)")
    parser.add_argument("--set", action="append", default=[], type=parse_assignment, metavar="XX=0xYY",
                        help="Override a single mapping, e.g. --set 41=0x01")
    parser.add_argument("--export-map", metavar="PATH",
                        help="Write the resulting mapping table to PATH")

    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Enable verbose output (info and warning messages)")

    # I/O options
    io_group = parser.add_mutually_exclusive_group()
    io_group.add_argument("-t", "--text", help="Direct text input")
    io_group.add_argument("-i", "--input", help="Input file path (read as raw bytes)")

    parser.add_argument("-o", "--output", help="Output file path (written as raw bytes)")
    return parser


def read_input(args) -> bytes:
    if args.text is not None:
        return args.text.encode("utf-8")
    if args.input:
        return _read_bytes(args.input)
    if sys.stdin.isatty():
        print("[ARCANE] Paste input below. Ctrl+D (Unix) or Ctrl+Z (Win) to end:", file=sys.stderr)
    try:
        return sys.stdin.buffer.read()
    except KeyboardInterrupt:
        sys.exit(0)


def main(argv: Optional[List[str]] = None):
    global VERBOSE

    parser = build_parser()
    args = parser.parse_args(argv)
    VERBOSE = args.verbose

    session = Session()
    try:
        # 1. BUILD MAPPING
        for path in args.map:
            session.import_mapping(path)
        for byte, hex_text in args.set:
            session.set_mapping(byte, hex_text)

        # 2. RUN ACTION
        result = None
        if args.show_map:
            print_rows(mapping_rows(session.table))
        elif args.smart_map:
            session.set_text(read_input(args))
            print_rows(session.generate_smart_mapping())
        elif args.encode:
            session.set_text(read_input(args))
            result = session.encode()
        else:
            result = session.decode(read_input(args))

        if args.export_map:
            session.export_mapping(args.export_map)

        # 3. WRITE OUTPUT
        if result is not None:
            if args.output:
                _write_bytes(args.output, result)
            else:
                sys.stdout.buffer.write(result)
                sys.stdout.flush()
    except ArcaneTextError as e:
        sys.exit(f"Error: {e}")

if __name__ == "__main__":
    main()
