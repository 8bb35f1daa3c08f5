"""
Line-oriented PEM decoder.

The scanner is a two-state machine (outside a block / inside a block body)
driven one line at a time, so the size cap is enforced while reading rather
than after the whole input has been buffered.
"""
import base64
import binascii
import os
from enum import Enum
from typing import Iterable, Iterator, List, Optional, Union

from ..errors import CertificateLoadError, MalformedPemError, OversizedInputError
from .models import PemBlock


DEFAULT_MAX_PEM_SIZE = 32 * 1024

BEGIN_PREFIX = "-----BEGIN "
END_PREFIX = "-----END "
BOUNDARY_SUFFIX = "-----"


class _State(Enum):
    OUTSIDE = "outside"
    IN_BODY = "in_body"


class PemDecoder:
    """Extracts PemBlocks from PEM text, in input order."""

    def __init__(self, max_size: Optional[int] = DEFAULT_MAX_PEM_SIZE):
        """
        Args:
            max_size: Maximum input size in bytes, or None for no cap.
        """
        if max_size is not None and max_size <= 0:
            raise ValueError("max_size must be a positive integer or None")
        self.max_size = max_size

    def decode(self, text: Union[str, bytes]) -> Iterator[PemBlock]:
        """
        Decode PEM text that is already in memory.

        Raises:
            OversizedInputError: If the text is larger than max_size (raised
                immediately, before any block is produced)
        """
        if isinstance(text, bytes):
            size = len(text)
            text = text.decode("utf-8", errors="replace")
        else:
            size = len(text.encode("utf-8"))

        if self.max_size is not None and size > self.max_size:
            raise OversizedInputError(size, self.max_size)

        return self._scan(text.splitlines())

    def decode_lines(self, lines: Iterable[str], source: Optional[str] = None) -> Iterator[PemBlock]:
        """Decode PEM from an iterable of text lines, counting size as lines arrive."""
        return self._scan(self._bounded(lines, source))

    def decode_file(self, path: Union[str, os.PathLike]) -> Iterator[PemBlock]:
        """
        Decode a PEM file.

        Raises:
            CertificateLoadError: If the file cannot be read
            OversizedInputError: If the file is larger than max_size
        """
        path = os.fspath(path)
        try:
            size = os.path.getsize(path)
        except OSError as e:
            raise CertificateLoadError(path, e.strerror or str(e)) from e

        if self.max_size is not None and size > self.max_size:
            raise OversizedInputError(size, self.max_size, path)

        return self._scan(self._read_lines(path))

    def _read_lines(self, path: str) -> Iterator[str]:
        consumed = 0
        try:
            with open(path, "rb") as handle:
                while True:
                    limit = -1 if self.max_size is None else self.max_size - consumed + 1
                    line = handle.readline(limit)
                    if not line:
                        break
                    consumed += len(line)
                    if self.max_size is not None and consumed > self.max_size:
                        raise OversizedInputError(consumed, self.max_size, path)
                    yield line.decode("utf-8", errors="replace")
        except OSError as e:
            raise CertificateLoadError(path, e.strerror or str(e)) from e

    def _bounded(self, lines: Iterable[str], source: Optional[str]) -> Iterator[str]:
        consumed = 0
        for line in lines:
            consumed += len(line.encode("utf-8"))
            if self.max_size is not None and consumed > self.max_size:
                raise OversizedInputError(consumed, self.max_size, source)
            yield line

    def _scan(self, lines: Iterable[str]) -> Iterator[PemBlock]:
        state = _State.OUTSIDE
        label = None
        body: List[str] = []
        index = 0

        for raw_line in lines:
            line = raw_line.strip()

            if state is _State.OUTSIDE:
                if line.startswith(BEGIN_PREFIX):
                    label = self._parse_label(line, BEGIN_PREFIX, index)
                    body = []
                    state = _State.IN_BODY
                elif line.startswith(END_PREFIX):
                    end_label = self._parse_label(line, END_PREFIX, index)
                    raise MalformedPemError(
                        f"END {end_label!r} without a matching BEGIN",
                        block_index=index,
                        end_label=end_label
                    )
                # Anything else outside a block is commentary
                continue

            if line.startswith(END_PREFIX):
                end_label = self._parse_label(line, END_PREFIX, index)
                if end_label != label:
                    raise MalformedPemError(
                        f"BEGIN {label!r} does not match END {end_label!r}",
                        block_index=index,
                        begin_label=label,
                        end_label=end_label
                    )
                yield PemBlock(label=label, payload=self._decode_body(body, index), index=index)
                index += 1
                label = None
                state = _State.OUTSIDE
            elif line.startswith(BEGIN_PREFIX):
                raise MalformedPemError(
                    f"BEGIN found inside unterminated block {label!r}",
                    block_index=index,
                    begin_label=label
                )
            elif line:
                body.append(line)

        if state is _State.IN_BODY:
            raise MalformedPemError(
                f"block {label!r} has no END line",
                block_index=index,
                begin_label=label
            )

    @staticmethod
    def _parse_label(line: str, prefix: str, index: int) -> str:
        if not line.endswith(BOUNDARY_SUFFIX) or len(line) <= len(prefix) + len(BOUNDARY_SUFFIX):
            raise MalformedPemError(f"malformed boundary line {line!r}", block_index=index)
        return line[len(prefix):-len(BOUNDARY_SUFFIX)]

    @staticmethod
    def _decode_body(body: List[str], index: int) -> bytes:
        try:
            return base64.b64decode("".join(body), validate=True)
        except (binascii.Error, ValueError) as e:
            raise MalformedPemError(f"invalid base64 body ({e})", block_index=index) from e
