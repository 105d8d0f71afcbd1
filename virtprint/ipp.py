"""IPP/1.1 and 2.x binary message codec (RFC 8010 framing)."""

import io
import struct
from typing import Any, BinaryIO, Dict, Iterable, List, NamedTuple, Optional, Sequence, Tuple, Union

from .errors import ProtocolError

IPP_OP_PRINT_JOB = 0x0002
IPP_OP_VALIDATE_JOB = 0x0004
IPP_OP_CANCEL_JOB = 0x0008
IPP_OP_GET_JOB_ATTRIBUTES = 0x0009
IPP_OP_GET_JOBS = 0x000A
IPP_OP_GET_PRINTER_ATTRIBUTES = 0x000B

SUPPORTED_OPERATIONS = (
    IPP_OP_PRINT_JOB,
    IPP_OP_VALIDATE_JOB,
    IPP_OP_CANCEL_JOB,
    IPP_OP_GET_JOB_ATTRIBUTES,
    IPP_OP_GET_JOBS,
    IPP_OP_GET_PRINTER_ATTRIBUTES,
)

STATUS_OK = 0x0000
STATUS_BAD_REQUEST = 0x0400
STATUS_NOT_AUTHENTICATED = 0x0402
STATUS_NOT_AUTHORIZED = 0x0403
STATUS_NOT_POSSIBLE = 0x0404
STATUS_NOT_FOUND = 0x0406
STATUS_REQUEST_ENTITY_TOO_LARGE = 0x0409
STATUS_DOCUMENT_FORMAT_NOT_SUPPORTED = 0x040A
STATUS_INTERNAL_ERROR = 0x0500
STATUS_OPERATION_NOT_SUPPORTED = 0x0501
STATUS_VERSION_NOT_SUPPORTED = 0x0503
STATUS_BUSY = 0x0507

TAG_OPERATION_ATTRIBUTES = 0x01
TAG_JOB_ATTRIBUTES = 0x02
TAG_END_OF_ATTRIBUTES = 0x03
TAG_PRINTER_ATTRIBUTES = 0x04

VT_INTEGER = 0x21
VT_BOOLEAN = 0x22
VT_ENUM = 0x23
VT_TEXT_WITHOUT_LANGUAGE = 0x41
VT_NAME_WITHOUT_LANGUAGE = 0x42
VT_KEYWORD = 0x44
VT_URI = 0x45
VT_CHARSET = 0x47
VT_NATURAL_LANGUAGE = 0x48
VT_MIME_MEDIA_TYPE = 0x49

_INT_TAGS = {VT_INTEGER, VT_ENUM}
_STRING_TAGS = set(range(0x41, 0x4A))

JOB_STATE_PENDING = 3
JOB_STATE_PROCESSING = 5
JOB_STATE_CANCELED = 7
JOB_STATE_ABORTED = 8
JOB_STATE_COMPLETED = 9

PRINTER_STATE_IDLE = 3
PRINTER_STATE_PROCESSING = 4

_OP_NAMES = {
    IPP_OP_PRINT_JOB: "Print-Job",
    IPP_OP_VALIDATE_JOB: "Validate-Job",
    IPP_OP_CANCEL_JOB: "Cancel-Job",
    IPP_OP_GET_JOB_ATTRIBUTES: "Get-Job-Attributes",
    IPP_OP_GET_JOBS: "Get-Jobs",
    IPP_OP_GET_PRINTER_ATTRIBUTES: "Get-Printer-Attributes",
}


def op_name(operation_id: int) -> str:
    return _OP_NAMES.get(operation_id, f"op-0x{operation_id:04x}")


Value = Union[int, bool, str, bytes]


class IppAttribute(NamedTuple):
    tag: int
    name: str
    values: List[Value]


class IppRequest:
    def __init__(self, version_major: int, version_minor: int, operation_id: int, request_id: int) -> None:
        self.version_major = version_major
        self.version_minor = version_minor
        self.operation_id = operation_id
        self.request_id = request_id
        self.groups: List[Tuple[int, Dict[str, IppAttribute]]] = []

    @property
    def version(self) -> str:
        return f"{self.version_major}.{self.version_minor}"

    def group(self, tag: int) -> Dict[str, IppAttribute]:
        for group_tag, attrs in self.groups:
            if group_tag == tag:
                return attrs
        return {}

    def get(self, name: str, default: Any = None, group: int = TAG_OPERATION_ATTRIBUTES) -> Any:
        attr = self.group(group).get(name)
        if attr is None or not attr.values:
            return default
        return attr.values[0]

    def get_all(self, name: str, group: int = TAG_OPERATION_ATTRIBUTES) -> List[Value]:
        attr = self.group(group).get(name)
        return list(attr.values) if attr else []


def _decode_value(tag: int, raw: bytes) -> Value:
    if tag in _INT_TAGS:
        if len(raw) != 4:
            raise ProtocolError(f"integer value of length {len(raw)}")
        return struct.unpack(">i", raw)[0]
    if tag == VT_BOOLEAN:
        if len(raw) != 1:
            raise ProtocolError(f"boolean value of length {len(raw)}")
        return raw != b"\x00"
    if tag in _STRING_TAGS:
        return raw.decode("utf-8", errors="replace")
    # dateTime, resolution, rangeOfInteger, octetString, collections: left raw
    return raw


class _Reader:
    def __init__(self, stream: BinaryIO) -> None:
        self.stream = stream
        self.consumed = 0

    def read_exact(self, n: int, what: str) -> bytes:
        data = self.stream.read(n) if n else b""
        while data is not None and len(data) < n:
            more = self.stream.read(n - len(data))
            if not more:
                break
            data += more
        if data is None or len(data) < n:
            raise ProtocolError(f"IPP truncated ({what})")
        self.consumed += n
        return data

    def read_u16(self, what: str) -> int:
        return struct.unpack(">H", self.read_exact(2, what))[0]


def read_ipp_request(stream: BinaryIO) -> IppRequest:
    """Read header and attribute groups from ``stream``.

    The stream is left positioned at the first byte of document data.
    Raises ProtocolError for anything that is not a well-formed message.
    """
    reader = _Reader(stream)
    header = reader.read_exact(8, "header")
    version_major, version_minor = header[0], header[1]
    operation_id = struct.unpack(">H", header[2:4])[0]
    request_id = struct.unpack(">I", header[4:8])[0]
    request = IppRequest(version_major, version_minor, operation_id, request_id)

    current: Optional[Dict[str, IppAttribute]] = None
    last: Optional[IppAttribute] = None
    while True:
        tag = reader.read_exact(1, "tag")[0]
        if tag <= 0x0F:
            if tag == TAG_END_OF_ATTRIBUTES:
                return request
            if tag == 0x00:
                raise ProtocolError("reserved delimiter tag 0x00")
            current = {}
            request.groups.append((tag, current))
            last = None
            continue

        if current is None:
            raise ProtocolError("attribute outside of any attribute group")
        name_len = reader.read_u16("name-length")
        name = reader.read_exact(name_len, "name").decode("utf-8", errors="replace") if name_len else ""
        value_len = reader.read_u16("value-length")
        value = _decode_value(tag, reader.read_exact(value_len, "value"))

        if not name:
            # additional value for the previous attribute
            if last is None:
                raise ProtocolError("additional value without a preceding attribute")
            last.values.append(value)
            continue
        last = IppAttribute(tag, name, [value])
        current[name] = last


def parse_ipp_request(raw: bytes) -> Tuple[IppRequest, bytes]:
    """Parse a complete request body; returns the message and its document bytes."""
    stream = io.BytesIO(raw)
    request = read_ipp_request(stream)
    return request, stream.read()


def peek_request_header(raw: bytes) -> Tuple[int, int, int]:
    """(version_major, version_minor, request_id) from whatever header bytes arrived."""
    if len(raw) < 8:
        return 1, 1, 0
    return raw[0], raw[1], struct.unpack(">I", raw[4:8])[0]


# ---- encoding ----------------------------------------------------------


def _ipp_attr(tag: int, name: str, value: bytes) -> bytes:
    name_b = name.encode("utf-8")
    return bytes([tag]) + struct.pack(">H", len(name_b)) + name_b + struct.pack(">H", len(value)) + value


def _encode_value(tag: int, value: Value) -> bytes:
    if tag == VT_BOOLEAN:
        return b"\x01" if value else b"\x00"
    if tag in _INT_TAGS:
        return struct.pack(">i", int(value))
    if isinstance(value, bytes):
        return value
    return str(value).encode("utf-8")


def _ipp_attr_set(tag: int, name: str, values: Sequence[Value]) -> bytes:
    if not values:
        return b""
    out = bytearray()
    first = True
    for v in values:
        value_b = _encode_value(tag, v)
        if first:
            out += _ipp_attr(tag, name, value_b)
            first = False
        else:
            # additional value: name-length = 0
            out += bytes([tag]) + struct.pack(">H", 0) + struct.pack(">H", len(value_b)) + value_b
    return bytes(out)


def build_ipp_message(
    version_major: int,
    version_minor: int,
    code: int,
    request_id: int,
    attribute_bytes: bytes,
    document: bytes = b"",
) -> bytes:
    message = bytearray()
    message += bytes([version_major & 0xFF, version_minor & 0xFF])
    message += struct.pack(">H", code)
    message += struct.pack(">I", request_id)
    message += attribute_bytes
    message += bytes([TAG_END_OF_ATTRIBUTES])
    message += document
    return bytes(message)


class AttributeWriter:
    """Accumulates attribute groups in wire order."""

    def __init__(self) -> None:
        self.data = bytearray()

    def group(self, tag: int) -> "AttributeWriter":
        self.data += bytes([tag])
        return self

    def add(self, tag: int, name: str, value: Union[Value, Iterable[Value]]) -> "AttributeWriter":
        if isinstance(value, (list, tuple)):
            self.data += _ipp_attr_set(tag, name, list(value))
        else:
            self.data += _ipp_attr(tag, name, _encode_value(tag, value))
        return self

    def add_bool(self, name: str, value: bool) -> "AttributeWriter":
        return self.add(VT_BOOLEAN, name, value)

    def __bytes__(self) -> bytes:
        return bytes(self.data)


class IppResponse(AttributeWriter):
    """Response with the mandatory charset/language operation attributes."""

    def __init__(
        self,
        status: int,
        request_id: int,
        version: Tuple[int, int] = (1, 1),
        status_message: Optional[str] = None,
    ) -> None:
        super().__init__()
        self.status = status
        self.request_id = request_id
        self.version = version
        self.group(TAG_OPERATION_ATTRIBUTES)
        self.add(VT_CHARSET, "attributes-charset", "utf-8")
        self.add(VT_NATURAL_LANGUAGE, "attributes-natural-language", "en")
        if status_message:
            self.add(VT_TEXT_WITHOUT_LANGUAGE, "status-message", status_message[:255])

    def to_bytes(self) -> bytes:
        return build_ipp_message(self.version[0], self.version[1], self.status, self.request_id, bytes(self.data))


def build_ipp_request(
    operation_id: int,
    request_id: int,
    printer_uri: str,
    attributes: Iterable[Tuple[int, str, Union[Value, Iterable[Value]]]] = (),
    document: bytes = b"",
    version: Tuple[int, int] = (2, 0),
) -> bytes:
    """Client side encoder: operation group with charset, language and printer-uri."""
    writer = AttributeWriter().group(TAG_OPERATION_ATTRIBUTES)
    writer.add(VT_CHARSET, "attributes-charset", "utf-8")
    writer.add(VT_NATURAL_LANGUAGE, "attributes-natural-language", "en")
    writer.add(VT_URI, "printer-uri", printer_uri)
    for tag, name, value in attributes:
        writer.add(tag, name, value)
    return build_ipp_message(version[0], version[1], operation_id, request_id, bytes(writer), document)


class IppResponseMessage(IppRequest):
    """Parsed response; ``operation_id`` holds the status code."""

    @property
    def status(self) -> int:
        return self.operation_id


def parse_ipp_response(raw: bytes) -> IppResponseMessage:
    request, _ = parse_ipp_request(raw)
    response = IppResponseMessage(request.version_major, request.version_minor, request.operation_id, request.request_id)
    response.groups = request.groups
    return response
