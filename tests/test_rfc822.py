import base64
import bz2
import gzip
import quopri
import time

import pytest

from mboxindex.rfc822 import (
    Attachment,
    BadHeadersError,
    ContentType,
    Headers,
    Message,
    MsgSource,
    ParseStatus,
    data_to_rfc822,
    make_rfc822,
    parse_rfc822_date,
    read_mapping,
)

SIMPLE = (
    b"From: a@example.com\n"
    b"To: b@example.com\n"
    b"To: c@example.com\n"
    b"Subject: Hi\n"
    b"\n"
    b"body text\n"
)

MULTIPART = (
    b'Content-Type: multipart/mixed; boundary="XYZ"\n'
    b"\n"
    b"preamble\n"
    b"--XYZ\n"
    b"Content-Type: text/plain\n"
    b"\n"
    b"hello\n"
    b"--XYZ\n"
    b"Content-Type: text/html\n"
    b"\n"
    b"<p>hi</p>\n"
    b"--XYZ\n"
    b'Content-Disposition: attachment; filename="a.bin"\n'
    b"Content-Type: application/octet-stream\n"
    b"Content-Transfer-Encoding: base64\n"
    b"\n"
    b"aGVsbG8=\n"
    b"--XYZ--\n"
)


def test_msg_source_format():
    assert MsgSource("box", 10, 5).format() == "box[10,15)"
    assert MsgSource("file").format() == "file"


def test_simple_headers_and_body():
    msg = data_to_rfc822(SIMPLE)
    assert msg.status is ParseStatus.OK
    assert msg.headers.from_ == " a@example.com"
    assert msg.headers.to == " b@example.com,  c@example.com"
    assert msg.headers.subject == " Hi"
    assert msg.attachments == [Attachment(ContentType.TEXT_PLAIN, data=b"body text\n")]


def test_continuation_line_spliced():
    msg = data_to_rfc822(b"Subject: one\n\t two\n\nx")
    assert msg.headers.subject == " one two"


def test_bad_header_raises():
    with pytest.raises(BadHeadersError):
        data_to_rfc822(b"not a header\n\nbody")


def test_unterminated_header_raises():
    with pytest.raises(BadHeadersError):
        data_to_rfc822(b"Subject: x")


def test_empty_message():
    msg = data_to_rfc822(b"")
    assert msg.headers == Headers()
    assert msg.attachments == [Attachment(ContentType.TEXT_PLAIN, data=b"")]


def test_encoded_word_in_subject():
    msg = data_to_rfc822(b"Subject: =?iso-8859-1?q?caf=E9?=\n\n")
    assert msg.headers.subject == " caf\xe9"


def test_status_flags():
    msg = data_to_rfc822(b"Status: RO\nX-Status: AF\n\n")
    assert (msg.headers.seen, msg.headers.replied, msg.headers.flagged) == (True, True, True)


def test_no_flags_by_default():
    msg = data_to_rfc822(b"Status: O\n\n")
    assert (msg.headers.seen, msg.headers.replied, msg.headers.flagged) == (False, False, False)


def test_leading_from_line_is_skipped_by_audit():
    msg = data_to_rfc822(b"From someone Sat Jan  1 00:00:00 2000\nSubject: x\n\nbody")
    assert msg.headers.subject == " x"


def test_date_header():
    msg = data_to_rfc822(b"Date: Mon, 7 Mar 2005 10:00:00 +0000\n\n")
    assert time.localtime(msg.headers.date)[:3] == (2005, 3, 7)


@pytest.mark.parametrize(
    "text, year",
    [("1 Jan 05 00:00:00", 2005), ("1 Jan 99 00:00:00", 1999), ("Sat, 1 Jan 2000 12:00", 2000)],
)
def test_parse_date_years(text, year):
    result = parse_rfc822_date(text)
    assert time.localtime(result)[:3] == (year, 1, 1)


@pytest.mark.parametrize(
    "text",
    ["garbage", "7 Foo 2005 10:00", "7 Mar 2005", "32 Mar 2005 10:00", "7 Mar", ""],
)
def test_parse_date_failures(text):
    assert parse_rfc822_date(text) is None


def test_multipart():
    msg = data_to_rfc822(MULTIPART)
    assert msg.status is ParseStatus.OK
    assert [a.content_type for a in msg.attachments] == [
        ContentType.TEXT_PLAIN,
        ContentType.TEXT_HTML,
        ContentType.OTHER,
    ]
    assert msg.attachments[0].data == b"hello\n"
    assert msg.attachments[1].data == b"<p>hi</p>\n"
    assert msg.attachments[2].filename == "a.bin"
    assert msg.attachments[2].data == base64.b64decode("aGVsbG8=")


def test_multipart_missing_end():
    data = MULTIPART[: MULTIPART.index(b"--XYZ--")]
    msg = data_to_rfc822(data)
    assert msg.status is ParseStatus.MISSING_END


def test_multipart_without_boundary():
    msg = data_to_rfc822(b"Content-Type: multipart/mixed\n\n--a\n\nx\n--a--\n")
    assert msg.status is ParseStatus.MULTIPART_SANS_BOUNDARY
    assert msg.attachments == []


def test_boundary_inside_line_is_ignored():
    data = (
        b'Content-Type: multipart/mixed; boundary="XYZ"\n\n'
        b"--XYZ\n"
        b"Content-Type: text/plain\n\n"
        b"see --XYZ inline\n"
        b"--XYZ--\n"
    )
    msg = data_to_rfc822(data)
    assert len(msg.attachments) == 1
    assert msg.attachments[0].data == b"see --XYZ inline\n"


def test_quoted_printable_body():
    body = b"a=3Db\n"
    msg = data_to_rfc822(b"Content-Transfer-Encoding: quoted-printable\n\n" + body)
    assert msg.attachments[0].data == quopri.decodestring(body)


def test_unparseable_transfer_encoding_gives_no_attachments():
    msg = data_to_rfc822(b"Content-Transfer-Encoding: a=b\n\nbody")
    assert msg.attachments == []


def test_filename_falls_back_to_content_type_name():
    data = (
        b'Content-Type: application/pdf; name="doc.pdf"\n'
        b"Content-Disposition: attachment\n\n"
        b"data"
    )
    msg = data_to_rfc822(data)
    assert msg.attachments[0].content_type is ContentType.OTHER
    assert msg.attachments[0].filename == "doc.pdf"


def test_inline_part_has_no_filename():
    data = b'Content-Type: text/plain\nContent-Disposition: inline; filename="x.txt"\n\nhi'
    msg = data_to_rfc822(data)
    assert msg.attachments[0].filename is None


def test_nested_message():
    data = b"Content-Type: message/rfc822\n\nSubject: inner\n\ninner body\n"
    msg = data_to_rfc822(data)
    att = msg.attachments[0]
    assert att.content_type is ContentType.MESSAGE_RFC822
    assert isinstance(att.message, Message)
    assert att.message.headers.subject == " inner"
    assert att.message.attachments[0].data == b"inner body\n"


def test_nested_message_with_bad_headers():
    msg = data_to_rfc822(b"Content-Type: message/rfc822\n\nbroken line\n\nx")
    assert msg.status is ParseStatus.BAD_HEADERS
    assert msg.attachments[0].message is None


def test_read_mapping_plain_and_empty(tmp_path):
    path = tmp_path / "msg"
    path.write_bytes(SIMPLE)
    assert read_mapping(path) == SIMPLE
    empty = tmp_path / "empty"
    empty.write_bytes(b"")
    assert read_mapping(empty) == b""


def test_read_mapping_missing_and_directory(tmp_path):
    assert read_mapping(tmp_path / "nothing") is None
    sub = tmp_path / "dir"
    sub.mkdir()
    (sub / "f").write_bytes(b"x")
    assert read_mapping(sub) is None


def test_read_mapping_compressed(tmp_path):
    gz = tmp_path / "box.gz"
    gz.write_bytes(gzip.compress(SIMPLE))
    bz = tmp_path / "box.BZ2"
    bz.write_bytes(bz2.compress(SIMPLE))
    assert read_mapping(gz) == SIMPLE
    assert read_mapping(bz) == SIMPLE


def test_read_mapping_corrupt_gzip(tmp_path):
    gz = tmp_path / "bad.gz"
    gz.write_bytes(b"this is not gzip data")
    assert read_mapping(gz) is None


def test_make_rfc822(tmp_path):
    path = tmp_path / "msg"
    path.write_bytes(SIMPLE)
    msg = make_rfc822(path)
    assert msg.headers.subject == " Hi"
    empty = tmp_path / "empty"
    empty.write_bytes(b"")
    assert make_rfc822(empty) is None


def test_make_rfc822_bad_headers(tmp_path):
    path = tmp_path / "bad"
    path.write_bytes(b"no colon here\n\nbody")
    with pytest.raises(BadHeadersError):
        make_rfc822(path)