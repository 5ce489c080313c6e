import logging
import re

_DOCUMENT_RE = re.compile(r"(?<![0-9A-Za-z])(\d{4,13})(\d{2})(?![0-9A-Za-z])")


def redact_document_numbers(text: str) -> str:
    """Mask standalone runs of 6 or more digits, keeping the last two."""

    return _DOCUMENT_RE.sub(lambda match: "*" * len(match.group(1)) + match.group(2), text)


class RedactDocumentNumberFilter(logging.Filter):
    """Keep voter document numbers out of log output."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = redact_document_numbers(message)
        if redacted != message:
            record.msg = redacted
            record.args = ()
        return True
