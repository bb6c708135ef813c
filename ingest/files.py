"""File-tree source for bulk ingestion."""

from pathlib import Path
from typing import Callable, Iterator, Optional, Sequence, Tuple, Union

from core.config import DEFAULT_FILE_PATTERN, FALLBACK_ENCODING, FILE_ENCODINGS
from core.errors import DecodingExhaustedError
from core.logging_setup import get_logger
from core.state import EmbedInput, Metadata

FileEntry = Tuple[str, EmbedInput, Optional[Metadata]]


def decode_bytes(
    data: bytes,
    path: str,
    encodings: Sequence[str] = FILE_ENCODINGS,
    fallback_encoding: Optional[str] = FALLBACK_ENCODING,
) -> str:
    """Decode ``data`` with the first encoding that accepts it.

    ``fallback_encoding`` is tried after ``encodings``; a single-byte codec
    such as latin-1 accepts any input.

    Raises:
        DecodingExhaustedError: No encoding could decode the bytes.
    """
    attempts = list(encodings)
    if fallback_encoding and fallback_encoding not in attempts:
        attempts.append(fallback_encoding)
    for encoding in attempts:
        try:
            return data.decode(encoding)
        except (UnicodeDecodeError, LookupError):
            continue
    raise DecodingExhaustedError(path, attempts)


def iter_files(
    root: Union[str, Path],
    pattern: str = DEFAULT_FILE_PATTERN,
    *,
    encodings: Sequence[str] = FILE_ENCODINGS,
    fallback_encoding: Optional[str] = FALLBACK_ENCODING,
    binary: bool = False,
    on_skip: Optional[Callable[[str, str], None]] = None,
) -> Iterator[FileEntry]:
    """Walk ``root`` and yield ``(relative_path, content, None)`` per matching file.

    Ids use ``/`` as the separator on every platform. A pattern without a
    ``/`` matches file names anywhere under ``root``. Files that cannot be
    read or decoded are reported through ``on_skip`` and left out.
    """
    logger = get_logger(__name__)
    root_path = Path(root)
    if not root_path.is_dir():
        raise NotADirectoryError(f"{root_path} is not a directory")
    logger.info(
        "iter_files_start", extra={"root": str(root_path), "pattern": pattern}
    )
    # A bare name pattern such as "*.txt" matches at any depth
    matches = root_path.glob(pattern) if "/" in pattern else root_path.rglob(pattern)
    for path in sorted(matches):
        if not path.is_file():
            continue
        item_id = path.relative_to(root_path).as_posix()
        try:
            data = path.read_bytes()
        except OSError as exc:
            logger.warning(
                "iter_files_read_failed", extra={"item_id": item_id, "error": str(exc)}
            )
            if on_skip:
                on_skip(item_id, str(exc))
            continue
        if binary:
            yield item_id, data, None
            continue
        try:
            text = decode_bytes(data, item_id, encodings, fallback_encoding)
        except DecodingExhaustedError as exc:
            logger.warning(
                "iter_files_decode_failed",
                extra={"item_id": item_id, "encodings": exc.encodings},
            )
            if on_skip:
                on_skip(item_id, str(exc))
            continue
        yield item_id, text, None
