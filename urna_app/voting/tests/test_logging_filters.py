import logging

from voting.logging_filters import RedactDocumentNumberFilter, redact_document_numbers


def _record(message: str, *args: object) -> logging.LogRecord:
    return logging.LogRecord(
        name="test",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=message,
        args=args,
        exc_info=None,
    )


def test_redacts_long_digit_runs():
    assert redact_document_numbers("Document 1032456789 is not enabled") == "Document ********89 is not enabled"


def test_keeps_short_numbers_and_hashes():
    assert redact_document_numbers("election=12 attempt=2/3") == "election=12 attempt=2/3"
    digest = "9f86d081884c7d659a2feaa0c55ad015a3bf4f1b2b0b822cd15d6c15b0f00a08"
    assert redact_document_numbers(f"hash={digest}") == f"hash={digest}"


def test_filter_rewrites_formatted_message():
    f = RedactDocumentNumberFilter()
    r = _record("Voter %s rejected in election %s", "1032456789", 4)

    assert f.filter(r) is True
    assert r.getMessage() == "Voter ********89 rejected in election 4"


def test_filter_leaves_clean_records_untouched():
    f = RedactDocumentNumberFilter()
    r = _record("Election %s finalized", 4)

    assert f.filter(r) is True
    assert r.args == (4,)
