"""Subject header rewriting for correlating an opened message window.

The raw message is never parsed as MIME. The ``Subject`` field is located by
byte pattern, its (possibly folded) value is read out, and the value is
swapped for a correlation token that identifies the Outlook window later.
"""

import logging
import uuid
from dataclasses import dataclass

logger = logging.getLogger(__name__)

CRLF = b"\r\n"
SUBJECT_FIELD = b"Subject: "
# Anchored to a line terminator so "X-Subject: " or mid-line text never match.
SUBJECT_PATTERN = CRLF + SUBJECT_FIELD
HEADER_BODY_SEPARATOR = CRLF + CRLF
LWSP = (0x20, 0x09)


@dataclass(frozen=True)
class SubjectSpan:
    """Byte offsets of a located Subject value.

    ``value_start`` is the first byte after ``Subject: ``. ``value_end`` is the
    terminator at which unfolding stopped (or the buffer end), and
    ``resume_at`` the first byte after that terminator.
    """

    value_start: int
    value_end: int
    resume_at: int


@dataclass(frozen=True)
class RewrittenMessage:
    data: bytes
    token: str
    original_subject: str
    subject_found: bool


def new_correlation_token() -> str:
    return str(uuid.uuid4())


def header_block_end(buffer: bytes) -> int:
    """Offset of the blank line closing the header block, or the buffer length."""
    end = buffer.find(HEADER_BODY_SEPARATOR)
    return len(buffer) if end < 0 else end


def locate_subject_header(buffer: bytes) -> int | None:
    """Return the offset where the Subject value starts, or None.

    Only the header block is searched, so a quoted ``Subject:`` line in the
    body is never taken for the header.
    """
    if buffer.startswith(SUBJECT_FIELD):
        return len(SUBJECT_FIELD)
    index = buffer.find(SUBJECT_PATTERN, 0, header_block_end(buffer))
    if index < 0:
        return None
    return index + len(SUBJECT_PATTERN)


def extract_unfolded_value(buffer: bytes, value_start: int) -> tuple[str, SubjectSpan]:
    """Read the Subject value starting at ``value_start``, unfolding continuations.

    A terminator followed by a space or tab is folding: the terminator is
    dropped and the continuation line, leading whitespace included, is
    appended. Scanning stops at the first terminator not followed by LWSP.
    """
    segments = []
    position = value_start
    while True:
        terminator = buffer.find(CRLF, position)
        if terminator < 0:
            segments.append(buffer[position:])
            span = SubjectSpan(value_start, len(buffer), len(buffer))
            break
        segments.append(buffer[position:terminator])
        next_line = terminator + len(CRLF)
        if next_line < len(buffer) and buffer[next_line] in LWSP:
            position = next_line
            continue
        span = SubjectSpan(value_start, terminator, next_line)
        break
    text = b"".join(segments).decode("utf-8", errors="replace")
    return text, span


def build_rewritten_buffer(buffer: bytes, span: SubjectSpan | None, token: str) -> bytes:
    """Replace the Subject value with ``token``, or prepend a Subject header."""
    token_bytes = token.encode("utf-8")
    if span is None:
        return SUBJECT_FIELD + token_bytes + CRLF + buffer
    return buffer[:span.value_start] + token_bytes + CRLF + buffer[span.resume_at:]


def rewrite_message(buffer: bytes, token: str | None = None) -> RewrittenMessage:
    if token is None:
        token = new_correlation_token()

    value_start = locate_subject_header(buffer)
    if value_start is None:
        logger.debug("SUBJECT_MISSING action=synthesize size=%d", len(buffer))
        return RewrittenMessage(
            data=build_rewritten_buffer(buffer, None, token),
            token=token,
            original_subject="",
            subject_found=False,
        )

    original_subject, span = extract_unfolded_value(buffer, value_start)
    logger.debug(
        "SUBJECT_FOUND value_start=%d value_end=%d folded=%s",
        span.value_start,
        span.value_end,
        buffer.find(CRLF, value_start, span.value_end) >= 0,
    )
    return RewrittenMessage(
        data=build_rewritten_buffer(buffer, span, token),
        token=token,
        original_subject=original_subject,
        subject_found=True,
    )
