from __future__ import annotations

import json
from pathlib import Path

from battle_overlay.stats_reader import ReadError, ReadErrorKind, StatsReader


class SleepRecorder:
    def __init__(self) -> None:
        self.calls = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def _scripted_reader(outcomes, sleep):
    """Return a reader whose file reads replay ``outcomes`` (strings are returned, exceptions raised)."""

    remaining = list(outcomes)
    calls = []

    def read_text(path: Path) -> str:
        calls.append(path)
        outcome = remaining.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    return StatsReader(retries=5, delay_seconds=0.06, read_text=read_text, sleep=sleep), calls


def test_read_success_on_first_attempt(write_document, sample_document):
    path = write_document(sample_document)
    sleep = SleepRecorder()
    result = StatsReader(sleep=sleep).read(path)

    assert result.ok
    assert result.attempts == 1
    assert result.error is None
    assert len(result.snapshot.members) == 3
    assert json.loads(result.raw) == sample_document
    assert result.modified_at == path.stat().st_mtime
    assert sleep.calls == []


def test_missing_file_is_not_retried(tmp_path):
    sleep = SleepRecorder()
    result = StatsReader(sleep=sleep).read(tmp_path / "missing.json")

    assert not result.ok
    assert result.error.kind is ReadErrorKind.NOT_FOUND
    assert result.attempts == 1
    assert sleep.calls == []


def test_truncated_documents_are_retried_until_valid(write_document, sample_document):
    path = write_document(sample_document)
    good = json.dumps(sample_document)
    sleep = SleepRecorder()
    reader, calls = _scripted_reader(['{"partyMembers": ', "", "{", "[", good], sleep)

    result = reader.read(path)

    assert result.ok
    assert result.attempts == 5
    assert len(calls) == 5
    assert sleep.calls == [0.06] * 4


def test_io_errors_are_retried(write_document, sample_document):
    path = write_document(sample_document)
    sleep = SleepRecorder()
    reader, _calls = _scripted_reader([PermissionError("locked"), json.dumps(sample_document)], sleep)

    result = reader.read(path)

    assert result.ok
    assert result.attempts == 2
    assert sleep.calls == [0.06]


def test_exhausted_parse_retries_report_parse_failure(write_document, sample_document):
    path = write_document(sample_document)
    sleep = SleepRecorder()
    reader, calls = _scripted_reader(["{"] * 5, sleep)

    result = reader.read(path)

    assert not result.ok
    assert result.snapshot is None
    assert result.error.kind is ReadErrorKind.PARSE_FAILED
    assert result.attempts == 5
    assert len(calls) == 5
    assert len(sleep.calls) == 4


def test_exhausted_io_retries_report_io_failure(write_document, sample_document):
    path = write_document(sample_document)
    reader, _calls = _scripted_reader([OSError("busy")] * 5, SleepRecorder())

    result = reader.read(path)

    assert result.error.kind is ReadErrorKind.IO_FAILED
    assert "busy" in result.error.message
    assert result.error.transient


def test_unexpected_exception_is_returned_immediately(write_document, sample_document):
    path = write_document(sample_document)
    sleep = SleepRecorder()
    reader, calls = _scripted_reader([RuntimeError("boom"), json.dumps(sample_document)], sleep)

    result = reader.read(path)

    assert result.error.kind is ReadErrorKind.UNEXPECTED
    assert result.error.message == "boom"
    assert not result.error.transient
    assert result.attempts == 1
    assert len(calls) == 1
    assert sleep.calls == []


def test_invalid_utf8_is_a_parse_failure(tmp_path):
    path = tmp_path / "current.json"
    path.write_bytes(b'{"party": "\xff"}')
    reader = StatsReader(retries=2, sleep=SleepRecorder())

    result = reader.read(path)

    assert result.error.kind is ReadErrorKind.PARSE_FAILED
    assert result.attempts == 2


def test_banner_text_per_error_kind():
    assert ReadError(ReadErrorKind.NOT_FOUND, "file not found").banner_text() == (
        "Stats file not found. Showing last good data."
    )
    assert ReadError(ReadErrorKind.PARSE_FAILED, "invalid JSON").banner_text() == (
        "Parse failed: invalid JSON. Showing last good data."
    )
    assert ReadError(ReadErrorKind.IO_FAILED, "").banner_text() == "Parse failed: unknown error. Showing last good data."
    assert ReadError(ReadErrorKind.UNEXPECTED, "boom").banner_text() == "Read error: boom. Showing last good data."
