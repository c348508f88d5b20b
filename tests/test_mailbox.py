"""Tests for message files, mailboxes, artifacts and watchers."""

import threading
import time
from datetime import datetime, timezone

import pytest

from teamai.exceptions import NotFound
from teamai.mailbox import (
    ArtifactStore,
    Mailbox,
    Message,
    MessageStatus,
    MessageType,
    Priority,
    WatchHandle,
    new_message_id,
    parse_message,
    read_subject,
    render_message,
)
from teamai.validators import ValidationError

SENDER = "sender-1"
RECIPIENT = "recipient-1"


def make_message(subject="Hello", body="Body text", **kwargs):
    return Message(message_id="", sender=SENDER, recipient=RECIPIENT, subject=subject, body=body, **kwargs)


@pytest.fixture
def mailbox(root, layout):
    layout.ensure_mailbox(RECIPIENT)
    return Mailbox(root)


class TestMessageIds:
    def test_format(self, monkeypatch):
        monkeypatch.setattr("teamai.mailbox._last_id_time", None)
        message_id = new_message_id(datetime(2025, 1, 1, 12, 0, 0, 123456, tzinfo=timezone.utc))
        stamp, suffix = message_id.split("-")
        assert stamp.startswith("20250101T120000")
        assert stamp.endswith("Z")
        assert len(suffix) == 8

    def test_strictly_increasing_for_same_instant(self, monkeypatch):
        monkeypatch.setattr("teamai.mailbox._last_id_time", None)
        now = datetime(2030, 1, 1, tzinfo=timezone.utc)
        ids = [new_message_id(now) for _ in range(5)]
        stamps = [i.split("-")[0] for i in ids]
        assert stamps == sorted(stamps)
        assert len(set(stamps)) == 5


class TestMessageFormat:
    def test_render_layout(self):
        message = make_message(
            subject="Need review",
            msg_type=MessageType.QUERY,
            priority=Priority.HIGH,
            sent_at=datetime(2025, 1, 1, 12, tzinfo=timezone.utc),
            artifact="artifacts/abc-notes.txt",
        )
        message.message_id = "20250101T120000000000Z-00000000"
        lines = render_message(message).split("\n")
        assert lines[0] == "# Subject: Need review"
        assert lines[1] == f"From: {SENDER}"
        assert lines[2] == f"To: {RECIPIENT}"
        assert lines[3] == "Type: query"
        assert lines[4] == "Priority: high"
        assert lines[5] == "Date: 2025-01-01T12:00:00+00:00"
        assert lines[6] == "Message-ID: 20250101T120000000000Z-00000000"
        assert lines[7] == "Artifact: artifacts/abc-notes.txt"
        assert lines[8] == ""
        assert lines[9] == "Body text"

    def test_parse_rendered_message(self):
        message = make_message(body="line one\n\nline three", sent_at=datetime(2025, 1, 1, tzinfo=timezone.utc))
        message.message_id = "m1"
        parsed = parse_message(render_message(message), "m1")
        assert parsed.subject == "Hello"
        assert parsed.body == "line one\n\nline three"
        assert parsed.sender == SENDER
        assert parsed.msg_type == MessageType.REQUEST
        assert parsed.sent_at == message.sent_at

    def test_parse_defaults_for_missing_headers(self):
        parsed = parse_message("# Subject: Hi\n\nJust a body\n", "m2", recipient=RECIPIENT)
        assert parsed.priority == Priority.NORMAL
        assert parsed.recipient == RECIPIENT
        assert parsed.body == "Just a body"

    def test_parse_requires_subject_line(self):
        with pytest.raises(ValueError, match="Subject"):
            parse_message("From: x\n\nbody", "m3")

    def test_read_subject(self, tmp_path):
        path = tmp_path / "m.md"
        path.write_text("# Subject: Deploy freeze\nFrom: x\n\nbody\n")
        assert read_subject(path) == "Deploy freeze"
        path.write_text("no subject here\n")
        assert read_subject(path) is None
        assert read_subject(tmp_path / "absent.md") is None


class TestMailbox:
    def test_deliver_creates_pending_file(self, mailbox, layout):
        message = mailbox.deliver(make_message())
        assert message.message_id
        assert message.sent_at is not None
        path = layout.todo_dir(RECIPIENT) / f"{message.message_id}.md"
        assert path.is_file()
        assert path.read_text().startswith("# Subject: Hello\n")

    def test_list_pending_in_send_order(self, mailbox):
        ids = [mailbox.deliver(make_message(subject=f"m{n}")).message_id for n in range(5)]
        assert mailbox.list_pending(RECIPIENT) == ids
        assert [m.subject for m in mailbox.read_messages(RECIPIENT)] == [f"m{n}" for n in range(5)]

    def test_list_ignores_temporary_files(self, mailbox, layout):
        mailbox.deliver(make_message())
        (layout.todo_dir(RECIPIENT) / ".tmp-abc.partial").write_text("partial")
        (layout.todo_dir(RECIPIENT) / "notes.txt").write_text("other")
        assert mailbox.pending_count(RECIPIENT) == 1

    def test_consume_moves_to_done(self, mailbox, layout):
        message = mailbox.deliver(make_message())
        mailbox.consume(RECIPIENT, message.message_id)
        assert mailbox.list_pending(RECIPIENT) == []
        assert (layout.done_dir(RECIPIENT) / message.filename).is_file()
        assert mailbox.read(RECIPIENT, message.message_id).status == MessageStatus.CONSUMED

    def test_consume_twice_raises_not_found(self, mailbox):
        message = mailbox.deliver(make_message())
        mailbox.consume(RECIPIENT, message.message_id)
        with pytest.raises(NotFound):
            mailbox.consume(RECIPIENT, message.message_id)

    def test_consume_accepts_filename(self, mailbox):
        message = mailbox.deliver(make_message())
        mailbox.consume(RECIPIENT, message.filename)
        assert mailbox.pending_count(RECIPIENT) == 0

    def test_concurrent_consume_single_winner(self, mailbox):
        message = mailbox.deliver(make_message())
        results = []
        barrier = threading.Barrier(8)

        def consume():
            barrier.wait()
            try:
                mailbox.consume(RECIPIENT, message.message_id)
                results.append("ok")
            except NotFound:
                results.append("missing")

        threads = [threading.Thread(target=consume) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert results.count("ok") == 1
        assert results.count("missing") == 7

    def test_read_messages_include_consumed(self, mailbox):
        first = mailbox.deliver(make_message(subject="first"))
        mailbox.deliver(make_message(subject="second"))
        mailbox.consume(RECIPIENT, first.message_id)
        pending = mailbox.read_messages(RECIPIENT)
        everything = mailbox.read_messages(RECIPIENT, include_consumed=True)
        assert [m.subject for m in pending] == ["second"]
        assert [(m.subject, m.status) for m in everything] == [
            ("first", MessageStatus.CONSUMED),
            ("second", MessageStatus.PENDING),
        ]

    def test_unreadable_file_skipped(self, mailbox, layout):
        mailbox.deliver(make_message(subject="good"))
        (layout.todo_dir(RECIPIENT) / "00000000T000000000000Z-bad.md").write_text("garbage")
        assert [m.subject for m in mailbox.read_messages(RECIPIENT)] == ["good"]

    def test_read_unknown_message(self, mailbox):
        with pytest.raises(NotFound):
            mailbox.read(RECIPIENT, "20990101T000000000000Z-ffffffff")
        with pytest.raises(NotFound):
            mailbox.read(RECIPIENT, "../metadata")

    def test_empty_mailbox_for_unknown_agent(self, mailbox):
        assert mailbox.list_pending("nobody") == []


class TestArtifactStore:
    def test_store_copies_into_artifacts(self, root, tmp_path):
        source = tmp_path / "notes.txt"
        source.write_text("shared notes")
        store = ArtifactStore(root)
        relative = store.store(source)
        assert relative.startswith("artifacts/")
        assert relative.endswith("-notes.txt")
        assert store.path_of(relative).read_text() == "shared notes"

    def test_missing_source(self, root, tmp_path):
        with pytest.raises(NotFound):
            ArtifactStore(root).store(tmp_path / "absent.txt")

    def test_directory_rejected(self, root, tmp_path):
        with pytest.raises(ValidationError, match="regular file"):
            ArtifactStore(root).store(tmp_path)

    def test_size_limit(self, root, tmp_path):
        source = tmp_path / "big.bin"
        source.write_bytes(b"x" * 11)
        with pytest.raises(ValidationError, match="too large"):
            ArtifactStore(root, max_bytes=10).store(source)

    def test_path_of_rejects_escape(self, root):
        with pytest.raises(NotFound):
            ArtifactStore(root).path_of("../../etc/passwd")


class TestWatchHandle:
    def test_poll_reports_each_message_once(self, mailbox):
        reported = []
        handle = WatchHandle(mailbox, RECIPIENT, 60, callback=reported.extend)
        mailbox.deliver(make_message(subject="before"))
        assert [m.subject for m in handle.poll()] == ["before"]
        assert handle.poll() == []
        mailbox.deliver(make_message(subject="after"))
        assert [m.subject for m in handle.poll()] == ["after"]
        assert [m.subject for m in reported] == ["before", "after"]

    def test_seen_ids_shrink_as_messages_are_consumed(self, mailbox):
        handle = WatchHandle(mailbox, RECIPIENT, 60, callback=lambda messages: None)
        first = mailbox.deliver(make_message(subject="one"))
        second = mailbox.deliver(make_message(subject="two"))
        assert len(handle.poll()) == 2
        mailbox.consume(RECIPIENT, first.message_id)
        assert handle.poll() == []
        assert handle._seen == {second.message_id}
        mailbox.consume(RECIPIENT, second.message_id)
        assert handle.poll() == []
        assert handle._seen == set()

    def test_background_watch(self, mailbox):
        arrived = threading.Event()
        seen = []

        def callback(messages):
            seen.extend(messages)
            arrived.set()

        handle = WatchHandle(mailbox, RECIPIENT, 0.02, callback=callback)
        handle.start()
        try:
            time.sleep(0.05)
            mailbox.deliver(make_message(subject="ping"))
            assert arrived.wait(2)
        finally:
            handle.stop()
        assert [m.subject for m in seen] == ["ping"]
