import io
import struct

import pytest

from virtprint.errors import ProtocolError
from virtprint.ipp import (
    IPP_OP_PRINT_JOB,
    STATUS_OK,
    TAG_JOB_ATTRIBUTES,
    TAG_OPERATION_ATTRIBUTES,
    VT_ENUM,
    VT_INTEGER,
    VT_KEYWORD,
    VT_MIME_MEDIA_TYPE,
    VT_NAME_WITHOUT_LANGUAGE,
    IppResponse,
    build_ipp_request,
    parse_ipp_request,
    parse_ipp_response,
    peek_request_header,
    read_ipp_request,
)


def _write_attribute(buf, tag, name, value):
    name_b = name.encode()
    buf.write(struct.pack(">BH", tag, len(name_b)))
    buf.write(name_b)
    buf.write(struct.pack(">H", len(value)))
    buf.write(value)


def _handmade_print_job(document=b"%!PS\nshowpage\n"):
    buf = io.BytesIO()
    buf.write(struct.pack(">BBHI", 2, 0, IPP_OP_PRINT_JOB, 42))
    buf.write(bytes([TAG_OPERATION_ATTRIBUTES]))
    _write_attribute(buf, 0x47, "attributes-charset", b"utf-8")
    _write_attribute(buf, 0x48, "attributes-natural-language", b"en")
    _write_attribute(buf, 0x45, "printer-uri", b"ipp://localhost/ipp/print")
    _write_attribute(buf, 0x42, "job-name", b"Quarterly report")
    _write_attribute(buf, 0x21, "copies", struct.pack(">i", -2))
    _write_attribute(buf, 0x22, "ipp-attribute-fidelity", b"\x01")
    buf.write(bytes([TAG_JOB_ATTRIBUTES]))
    _write_attribute(buf, 0x44, "sides", b"one-sided")
    # additional value: empty name
    _write_attribute(buf, 0x44, "", b"two-sided-long-edge")
    buf.write(b"\x03")
    buf.write(document)
    return buf.getvalue()


def test_parse_handmade_request():
    request, document = parse_ipp_request(_handmade_print_job())

    assert request.version == "2.0"
    assert request.operation_id == IPP_OP_PRINT_JOB
    assert request.request_id == 42
    assert request.get("job-name") == "Quarterly report"
    assert request.get("copies") == -2
    assert request.get("ipp-attribute-fidelity") is True
    assert request.get_all("sides", group=TAG_JOB_ATTRIBUTES) == ["one-sided", "two-sided-long-edge"]
    assert request.get("missing", "fallback") == "fallback"
    assert document == b"%!PS\nshowpage\n"


def test_stream_reader_stops_at_document():
    stream = io.BytesIO(_handmade_print_job(b"DOCUMENT"))
    request = read_ipp_request(stream)

    assert request.request_id == 42
    assert stream.read() == b"DOCUMENT"


@pytest.mark.parametrize(
    "raw",
    [
        b"",
        b"\x01\x01\x00",
        b"\x01\x01\x00\x02\x00\x00\x00\x07",  # no end-of-attributes
        b"\x01\x01\x00\x02\x00\x00\x00\x07\x01\x47\x00\x20attr",  # truncated name
        b"\x01\x01\x00\x02\x00\x00\x00\x07\x47\x00\x01a\x00\x01b\x03",  # attribute before any group
        b"\x01\x01\x00\x02\x00\x00\x00\x07\x01\x44\x00\x00\x00\x01b\x03",  # additional value with no attribute
        b"\x01\x01\x00\x02\x00\x00\x00\x07\x01\x21\x00\x01n\x00\x02\x00\x01\x03",  # short integer
        b"\x01\x01\x00\x02\x00\x00\x00\x07\x00\x03",  # reserved delimiter
    ],
)
def test_malformed_requests_raise_protocol_error(raw):
    with pytest.raises(ProtocolError) as excinfo:
        parse_ipp_request(raw)
    assert excinfo.value.status == 0x0400


def test_peek_header_tolerates_short_input():
    assert peek_request_header(b"\x02\x00\x00\x0b\x00\x00\x01\x00") == (2, 0, 256)
    assert peek_request_header(b"\x02") == (1, 1, 0)


def test_response_carries_required_operation_attributes():
    response = IppResponse(STATUS_OK, 9, version=(2, 0), status_message="fine")
    response.group(TAG_JOB_ATTRIBUTES)
    response.add(VT_INTEGER, "job-id", 12)
    response.add(VT_ENUM, "job-state", 3)
    response.add(VT_KEYWORD, "job-state-reasons", ["job-incoming", "job-queued"])
    raw = response.to_bytes()

    assert raw[:8] == b"\x02\x00\x00\x00\x00\x00\x00\x09"
    parsed = parse_ipp_response(raw)
    assert parsed.status == STATUS_OK
    assert parsed.get("attributes-charset") == "utf-8"
    assert parsed.get("attributes-natural-language") == "en"
    assert parsed.get("status-message") == "fine"
    assert parsed.get("job-id", group=TAG_JOB_ATTRIBUTES) == 12
    assert parsed.get_all("job-state-reasons", group=TAG_JOB_ATTRIBUTES) == ["job-incoming", "job-queued"]


def test_build_request_matches_handmade_layout():
    raw = build_ipp_request(
        IPP_OP_PRINT_JOB,
        5,
        "ipp://localhost/ipp/print",
        [
            (VT_NAME_WITHOUT_LANGUAGE, "job-name", "doc"),
            (VT_MIME_MEDIA_TYPE, "document-format", "application/pdf"),
        ],
        document=b"%PDF-1.4",
    )
    request, document = parse_ipp_request(raw)

    assert request.operation_id == IPP_OP_PRINT_JOB
    assert request.get("printer-uri") == "ipp://localhost/ipp/print"
    assert request.get("document-format") == "application/pdf"
    assert document == b"%PDF-1.4"
