import os

import pytest

from mboxindex.mbox import (
    DuplicateMboxError,
    Mbox,
    MboxDatabase,
    MboxLimitError,
    MboxMessageRecord,
    add_mbox_messages,
    build_mbox_lists,
    cull_dead_mboxen,
    decode_mbox_indices,
    encode_mbox_indices,
    rescan_mbox,
    verify_mbox_size_constraints,
)
from mboxindex.mboxscan import StoredMessage, compute_checksum


def _message(sender: str, subject: str, body: str) -> bytes:
    return (
        f"From {sender} Mon Jan  1 10:00:00 2001\n"
        f"Subject: {subject}\nStatus: RO\n\n{body}\n"
    ).encode()


def _mark_written(db: MboxDatabase) -> None:
    for mbox in db.mboxen:
        mbox.file_mtime = mbox.current_mtime
        mbox.file_size = mbox.current_size


@pytest.fixture
def two_message_box(tmp_path):
    data = _message("a@example.com", "one", "first") + _message("b@example.com", "two", "second")
    (tmp_path / "box").write_bytes(data)
    return tmp_path, data


def test_encode_decode_indices():
    assert encode_mbox_indices(1, 2) == 0x00010002
    assert decode_mbox_indices(encode_mbox_indices(7, 300)) == (7, 300)
    assert decode_mbox_indices(encode_mbox_indices(0x1FFFF, 0x10005)) == (0xFFFF, 5)


def test_build_and_add_new_mbox(two_message_box):
    folder, data = two_message_box
    db = MboxDatabase()
    build_mbox_lists(db, str(folder), "box", [])
    assert [m.path for m in db.mboxen] == [f"{folder}/box"]
    mbox = db.mboxen[0]
    assert len(mbox.new_msgs) == 2
    assert mbox.n_old_msgs_valid == 0

    assert add_mbox_messages(db) is True
    assert [(r.file_index, r.msg_index) for r in db.messages] == [(0, 0), (0, 1)]
    assert all(r.seen for r in db.messages)
    assert mbox.n_msgs == 2
    for stored in mbox.messages:
        assert stored.checksum == compute_checksum(data[stored.start:stored.end])
    assert mbox.new_msgs == []


def test_tokeniser_receives_messages(two_message_box):
    folder, _ = two_message_box
    seen = []
    db = MboxDatabase(tokeniser=lambda n, msg: seen.append((n, msg.headers.subject)))
    build_mbox_lists(db, str(folder), "box", [])
    add_mbox_messages(db)
    assert seen == [(0, " one"), (1, " two")]


def test_unchanged_mbox_not_rescanned(two_message_box):
    folder, _ = two_message_box
    db = MboxDatabase()
    build_mbox_lists(db, str(folder), "box", [])
    add_mbox_messages(db)
    _mark_written(db)
    build_mbox_lists(db, str(folder), "box", [])
    assert db.mboxen[0].n_old_msgs_valid == 2
    assert db.mboxen[0].new_msgs == []
    assert add_mbox_messages(db) is False
    assert len(db.messages) == 2


def test_appended_message_is_picked_up(two_message_box):
    folder, data = two_message_box
    db = MboxDatabase()
    build_mbox_lists(db, str(folder), "box", [])
    add_mbox_messages(db)
    _mark_written(db)
    with open(folder / "box", "ab") as handle:
        handle.write(_message("c@example.com", "three", "third"))
    build_mbox_lists(db, str(folder), "box", [])
    mbox = db.mboxen[0]
    assert mbox.n_old_msgs_valid == 2
    assert len(mbox.new_msgs) == 1
    assert add_mbox_messages(db) is True
    assert mbox.n_msgs == 3
    assert db.messages[-1].msg_index == 2
    assert mbox.messages[2].start > len(data)


def test_rescan_after_change_in_middle(two_message_box):
    folder, data = two_message_box
    db = MboxDatabase()
    build_mbox_lists(db, str(folder), "box", [])
    add_mbox_messages(db)
    mbox = db.mboxen[0]
    changed = data.replace(b"second", b"SECOND")
    rescan_mbox(mbox, changed)
    assert mbox.n_old_msgs_valid == 1
    assert len(mbox.new_msgs) == 1
    assert mbox.new_msgs[0].start == mbox.messages[1].start


def test_vanished_mbox_is_dead_and_culled(tmp_path):
    (tmp_path / "a").write_bytes(_message("a@example.com", "a", "x"))
    (tmp_path / "b").write_bytes(_message("b@example.com", "b", "y"))
    db = MboxDatabase()
    build_mbox_lists(db, str(tmp_path), "a:b", [])
    assert len(db.mboxen) == 2
    os.remove(tmp_path / "a")
    build_mbox_lists(db, str(tmp_path), "a:b", [])
    assert db.mboxen[0].path is None
    assert db.mboxen[0].n_msgs == 0
    cull_dead_mboxen(db)
    assert [m.path for m in db.mboxen] == [f"{tmp_path}/b"]


def test_cull_renumbers_records():
    db = MboxDatabase(
        mboxen=[Mbox(path=None), Mbox(path="keep")],
        messages=[MboxMessageRecord(file_index=1, msg_index=0), "other"],
    )
    cull_dead_mboxen(db)
    assert [m.path for m in db.mboxen] == ["keep"]
    assert db.messages[0].file_index == 0
    assert db.messages[1] == "other"


def test_cull_rejects_reference_to_dead_mbox():
    db = MboxDatabase(
        mboxen=[Mbox(path=None), Mbox(path="keep")],
        messages=[MboxMessageRecord(file_index=0, msg_index=0)],
    )
    with pytest.raises(ValueError):
        cull_dead_mboxen(db)


def test_duplicate_mbox_rejected(two_message_box):
    folder, _ = two_message_box
    with pytest.raises(DuplicateMboxError):
        build_mbox_lists(MboxDatabase(), str(folder), "box:box", [])


def test_symlinked_mbox_skipped(two_message_box):
    folder, _ = two_message_box
    os.symlink(folder / "box", folder / "link")
    db = MboxDatabase()
    build_mbox_lists(db, str(folder), "link", [])
    assert db.mboxen == []


def test_empty_mbox_has_no_messages(tmp_path):
    (tmp_path / "empty").write_bytes(b"")
    db = MboxDatabase()
    build_mbox_lists(db, str(tmp_path), "empty", [])
    assert len(db.mboxen) == 1
    assert db.mboxen[0].n_msgs == 0
    assert add_mbox_messages(db) is False


def test_false_separator_inside_multipart_is_coalesced(tmp_path):
    data = (
        b"From a@example.com Mon Jan  1 10:00:00 2001\n"
        b"Subject: multi\n"
        b'Content-Type: multipart/mixed; boundary="XX"\n'
        b"\n"
        b"--XX\n"
        b"Content-Type: text/plain\n"
        b"\n"
        b"hello\n"
        b"From b@example.com Tue Jan  2 10:00:00 2001\n"
        b"more\n"
        b"--XX--\n"
    )
    (tmp_path / "box").write_bytes(data)
    db = MboxDatabase()
    build_mbox_lists(db, str(tmp_path), "box", [])
    assert len(db.mboxen[0].new_msgs) == 2
    add_mbox_messages(db)
    mbox = db.mboxen[0]
    assert mbox.n_msgs == 1
    assert len(db.messages) == 1
    assert mbox.messages[0].end == len(data)


def test_too_many_mboxen():
    db = MboxDatabase(mboxen=[Mbox(path=str(i)) for i in range(65537)])
    with pytest.raises(MboxLimitError):
        verify_mbox_size_constraints(db)
    db.mboxen.pop()
    assert verify_mbox_size_constraints(db) is None


def test_too_many_messages_in_mbox():
    stored = StoredMessage(0, 0, compute_checksum(b""))
    db = MboxDatabase(mboxen=[Mbox(path="big", messages=[stored] * 65537)])
    with pytest.raises(MboxLimitError, match="big"):
        verify_mbox_size_constraints(db)