"""Raw-text extraction for the supported document formats.

Text formats are read asynchronously; PDF and DOCX parsing is blocking and
runs in a worker thread. Tabular and structured formats are rendered as
indented JSON so their content stays readable once chunked.
"""

import asyncio
import csv
import io
import json
from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path

import aiofiles
from docx import Document
from loguru import logger
from pypdf import PdfReader

from rag_backend.errors import IngestionError, UnsupportedFileTypeError
from rag_backend.models import FileInfo

DEFAULT_EXTENSIONS = (".pdf", ".docx", ".txt", ".md", ".csv", ".json")


def file_extension(filename: str | Path) -> str:
    """Lower-cased extension including the dot ("" when there is none)."""
    return Path(filename).suffix.lower()


def is_supported_file(filename: str | Path, extensions: Iterable[str]) -> bool:
    return file_extension(filename) in {ext.lower() for ext in extensions}


def get_file_info(path: str | Path) -> FileInfo:
    """Describe a file on disk.

    The path is kept exactly as given: it becomes the `source` of every chunk
    and is the key used to remove the document later.

    Raises:
        FileNotFoundError: If the path does not exist
        IsADirectoryError: If the path is a directory
    """
    file_path = Path(path)
    stats = file_path.stat()
    if file_path.is_dir():
        raise IsADirectoryError(f"Not a file: {path}")

    return FileInfo(
        filename=file_path.name,
        path=str(path),
        size=stats.st_size,
        type=file_extension(file_path),
        last_modified=datetime.fromtimestamp(stats.st_mtime, UTC),
    )


def list_supported_files(
    directory: str | Path, extensions: Iterable[str], recursive: bool = False
) -> list[FileInfo]:
    """List supported files in a directory, most recently modified first.

    Raises:
        NotADirectoryError: If directory is not a directory
    """
    root = Path(directory)
    if not root.is_dir():
        raise NotADirectoryError(f"Not a directory: {directory}")

    allowed = {ext.lower() for ext in extensions}
    candidates = root.rglob("*") if recursive else root.iterdir()
    files = [
        get_file_info(candidate)
        for candidate in candidates
        if candidate.is_file() and file_extension(candidate) in allowed
    ]
    return sorted(files, key=lambda info: info.last_modified, reverse=True)


async def _read_text(path: str | Path) -> str:
    async with aiofiles.open(path, encoding="utf-8") as f:
        return await f.read()


def _csv_to_json(text: str) -> str:
    rows = list(csv.DictReader(io.StringIO(text)))
    return json.dumps(rows, indent=2, ensure_ascii=False)


def _extract_pdf(path: str | Path) -> str:
    reader = PdfReader(path)
    return "\n".join(page.extract_text() or "" for page in reader.pages)


def _extract_docx(path: str | Path) -> str:
    document = Document(str(path))
    return "\n".join(paragraph.text for paragraph in document.paragraphs)


async def extract_text(path: str | Path, file_type: str) -> str:
    """Extract raw text from a document.

    Args:
        path: File to read
        file_type: Extension tag from `get_file_info` (e.g. ".pdf")

    Returns:
        Extracted text; empty when the document holds none

    Raises:
        UnsupportedFileTypeError: For extensions without an extractor
        IngestionError: If the file cannot be read or parsed
    """
    try:
        if file_type in (".txt", ".md"):
            return await _read_text(path)
        elif file_type == ".csv":
            return _csv_to_json(await _read_text(path))
        elif file_type == ".json":
            data = json.loads(await _read_text(path))
            return json.dumps(data, indent=2, ensure_ascii=False)
        elif file_type == ".pdf":
            return await asyncio.to_thread(_extract_pdf, path)
        elif file_type == ".docx":
            return await asyncio.to_thread(_extract_docx, path)
    except Exception as e:
        logger.error(f"Error extracting {file_type} content from {path}: {e}")
        raise IngestionError(f"Failed to extract {file_type} content: {e}") from e

    raise UnsupportedFileTypeError(file_type)
