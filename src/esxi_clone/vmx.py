"""
Line-oriented model of VMware ``.vmx`` and ``.vmdk`` descriptor text.

A ``.vmx`` file is a flat list of ``key = "value"`` lines. Edits are made on
parsed lines instead of regular expressions built from VM names, so names with
characters like ``+`` or ``(`` cannot break them. Lines that are not
``key = value`` pairs (comments, blank lines, VMDK extent lines) are kept
verbatim.
"""

import codecs
import re
from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple
from xml.sax.saxutils import escape as xml_escape

from .logging import logger

_KEY_VALUE = re.compile(r'^(?P<key>[^\s=#"]+)\s*=\s*(?P<value>.*?)\s*$')
_QUOTED = re.compile(r'"([^"]*)"')
_DECLARED_ENCODING = re.compile(rb'^\s*\.encoding\s*=\s*"([^"]+)"', re.MULTILINE)

# Characters VMware writes as |XX hex escapes inside quoted values
_MUST_ESCAPE = {'"', "|", "#"}


def vmx_escape(text: str) -> str:
    """Encode a value the way VMware stores it inside double quotes."""
    out = []
    for ch in text:
        if ch in _MUST_ESCAPE or ord(ch) < 0x20 or ord(ch) == 0x7F:
            out.append("|%02X" % ord(ch))
        else:
            out.append(ch)
    return "".join(out)


def vmx_unescape(text: str) -> str:
    """Reverse :func:`vmx_escape`."""
    return re.sub(r"\|([0-9A-Fa-f]{2})", lambda m: chr(int(m.group(1), 16)), text)


@dataclass
class VmxLine:
    raw: str
    key: Optional[str] = None
    value: Optional[str] = None  # unescaped, without quotes

    @classmethod
    def parse(cls, raw: str) -> "VmxLine":
        stripped = raw.strip()
        if not stripped or stripped.startswith("#"):
            return cls(raw)

        match = _KEY_VALUE.match(stripped)
        if not match:
            return cls(raw)

        value = match.group("value")
        if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
            value = value[1:-1]
        return cls(raw, match.group("key"), vmx_unescape(value))

    @classmethod
    def build(cls, key: str, value: str) -> "VmxLine":
        return cls(f'{key} = "{vmx_escape(value)}"', key, value)


class VmxDocument:
    """Parsed ``.vmx``/``.vmdk`` text that can be edited and written back."""

    def __init__(self, lines: List[VmxLine], trailing_newline: bool = True) -> None:
        self.lines = lines
        self.trailing_newline = trailing_newline

    @classmethod
    def parse(cls, text: str) -> "VmxDocument":
        trailing = text.endswith("\n") or not text
        return cls([VmxLine.parse(raw) for raw in text.splitlines()], trailing)

    def dumps(self) -> str:
        text = "\n".join(line.raw for line in self.lines)
        if self.trailing_newline and self.lines:
            text += "\n"
        return text

    def __iter__(self) -> Iterator[VmxLine]:
        return iter(self.lines)

    def keys(self) -> List[str]:
        return [line.key for line in self.lines if line.key is not None]

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        for line in self.lines:
            if line.key == key:
                return line.value
        return default

    def __contains__(self, key: str) -> bool:
        return any(line.key == key for line in self.lines)

    def set(self, key: str, value: str) -> bool:
        """
        Set ``key`` to ``value``.

        The first line with the key is replaced and later duplicates dropped;
        if the key is absent a line is appended. Returns True if the text changed.
        """
        new_line = VmxLine.build(key, value)
        kept: List[VmxLine] = []
        replaced = False
        changed = False

        for line in self.lines:
            if line.key != key:
                kept.append(line)
            elif not replaced:
                changed = changed or line.raw != new_line.raw
                kept.append(new_line)
                replaced = True
            else:
                changed = True

        if not replaced:
            kept.append(new_line)
            changed = True

        self.lines = kept
        return changed

    def remove(self, key: str) -> int:
        """Delete every line with ``key``. Returns the number of lines removed."""
        before = len(self.lines)
        self.lines = [line for line in self.lines if line.key != key]
        return before - len(self.lines)

    def rename_references(self, old_name: str, new_name: str) -> int:
        """
        Rewrite quoted strings starting with ``old_name`` to start with ``new_name``.

        ``"phoenix11-flat.vmdk"`` becomes ``"phoenix11-test-flat.vmdk"``. Strings
        that already carry the new name are left alone, so running this twice
        changes nothing the second time. Returns the number of lines changed.
        """
        renamed = 0
        for index, line in enumerate(self.lines):
            new_raw = _QUOTED.sub(
                lambda m: '"%s"' % rename_value(m.group(1), old_name, new_name),
                line.raw,
            )
            if new_raw != line.raw:
                self.lines[index] = VmxLine.parse(new_raw)
                renamed += 1
        return renamed

    def references(self, name: str) -> bool:
        """True if any quoted string starts with ``name``."""
        return any(
            value.startswith(name)
            for line in self.lines
            for value in _QUOTED.findall(line.raw)
        )


def rename_value(value: str, old_name: str, new_name: str) -> str:
    """Swap the ``old_name`` prefix of ``value`` for ``new_name``."""
    if old_name == new_name:
        return value
    # "phoenix11-test.vmx" already renamed when new name extends the old one
    if new_name.startswith(old_name) and value.startswith(new_name):
        return value
    if value.startswith(old_name):
        return new_name + value[len(old_name):]
    return value


def rename_vmxf(text: str, old_name: str, new_name: str) -> str:
    """Point the ``.vmxf`` back-reference at the renamed ``.vmx``."""
    return text.replace(f">{xml_escape(old_name)}.vmx<", f">{xml_escape(new_name)}.vmx<")


def declared_encoding(data: bytes) -> str:
    """Codec named by the file's ``.encoding`` entry, UTF-8 when absent or unknown."""
    match = _DECLARED_ENCODING.search(data)
    if not match:
        return "utf-8"
    name = match.group(1).decode("ascii", "replace")
    try:
        return codecs.lookup(name).name
    except LookupError:
        logger.warning(f"Unknown config encoding '{name}', assuming UTF-8", encoding=name)
        return "utf-8"


def decode_config(data: bytes) -> Tuple[str, str]:
    """
    Decode a VMware config file. Returns ``(text, encoding)``.

    Bytes that do not match the declared encoding are read as latin-1, which
    maps every byte to one character and writes back unchanged.
    """
    encoding = declared_encoding(data)
    try:
        return data.decode(encoding), encoding
    except UnicodeDecodeError:
        logger.warning(
            f"Config is not valid {encoding}, reading it as latin-1",
            encoding=encoding,
        )
        return data.decode("latin-1"), "latin-1"
