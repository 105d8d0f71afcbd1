"""Input sniffing: document format, PJL preamble, PostScript DSC comments."""

import re
from typing import Dict, Optional

PDF = "application/pdf"
POSTSCRIPT = "application/postscript"
OCTET_STREAM = "application/octet-stream"

SUPPORTED_FORMATS = (POSTSCRIPT, PDF, OCTET_STREAM)

_UEL = b"\x1b%-12345X"
_PAYLOAD_MAGIC = ((b"%PDF", PDF), (b"%!", POSTSCRIPT))

_DSC_PATTERNS = {
    "title": re.compile(rb"^%%Title:\s*(.+?)\s*$", re.MULTILINE),
    "creator": re.compile(rb"^%%Creator:\s*(.+?)\s*$", re.MULTILINE),
    "for": re.compile(rb"^%%For:\s*(.+?)\s*$", re.MULTILINE),
}


def find_payload(head: bytes) -> Optional[int]:
    """Offset of the PostScript/PDF payload, skipping a PJL job preamble.

    Returns None when no payload signature is found in ``head``.
    """
    if not head:
        return None
    for magic, _ in _PAYLOAD_MAGIC:
        if head.startswith(magic):
            return 0
    if not (head.startswith(_UEL) or head.lstrip().startswith(b"@PJL")):
        return None
    # PJL lines end with LF; the payload starts at the first line carrying a magic
    pos = 0
    while pos < len(head):
        line_end = head.find(b"\n", pos)
        line = head[pos:] if line_end == -1 else head[pos:line_end]
        stripped = line.replace(_UEL, b"").lstrip()
        for magic, _ in _PAYLOAD_MAGIC:
            if stripped.startswith(magic):
                return pos + (len(line) - len(stripped))
        if line_end == -1:
            break
        pos = line_end + 1
    return None


def detect_format(head: bytes) -> str:
    offset = find_payload(head)
    if offset is None:
        return OCTET_STREAM
    payload = head[offset:]
    for magic, mime in _PAYLOAD_MAGIC:
        if payload.startswith(magic):
            return mime
    return OCTET_STREAM


def _clean(value: bytes) -> str:
    text = value.decode("utf-8", errors="replace").strip()
    # DSC text values are often PostScript strings: (My Document)
    if text.startswith("(") and text.endswith(")"):
        text = text[1:-1]
    return text.strip()


def parse_dsc_metadata(head: bytes) -> Dict[str, str]:
    """Extract DSC header comments (%%Title, %%Creator, %%For, ...)."""
    meta: Dict[str, str] = {}
    for key, pattern in _DSC_PATTERNS.items():
        match = pattern.search(head)
        if match:
            meta[key] = _clean(match.group(1))
    return meta
