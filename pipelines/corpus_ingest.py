"""Bulk ingest of a structured corpus shipped as a ZIP archive.

Each XML, HTML or plain-text member becomes one ``(source_ref, text)``
document, ready for chunking.
"""

import logging
import zipfile
from pathlib import Path
from typing import Iterator, Tuple

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

MARKUP_SUFFIXES = {".xml", ".html", ".htm"}
TEXT_SUFFIXES = {".txt", ".md"}


class CorpusError(Exception):
    """Raised when a corpus archive cannot be read."""
    pass


def markup_to_text(raw: str) -> str:
    """Reduce XML or HTML markup to whitespace-normalised text."""
    soup = BeautifulSoup(raw, "html.parser")
    for element in soup(["script", "style"]):
        element.decompose()
    return " ".join(soup.get_text(" ").split())


def iter_archive_documents(zip_path: str) -> Iterator[Tuple[str, str]]:
    """Yield ``(source_ref, text)`` for every supported member of an archive.

    Members are visited in archive order. Empty or undecodable members are
    logged and skipped.

    Raises:
        CorpusError: If the archive is missing or not a valid ZIP file
    """
    path = Path(zip_path)
    try:
        archive = zipfile.ZipFile(path)
    except (OSError, zipfile.BadZipFile) as e:
        raise CorpusError(f"Cannot open corpus archive {path}: {e}") from e

    with archive:
        members = [info for info in archive.infolist() if not info.is_dir()]
        logger.info(f"Ingesting {len(members)} members from {path.name}")

        for info in members:
            suffix = Path(info.filename).suffix.lower()
            if suffix not in MARKUP_SUFFIXES and suffix not in TEXT_SUFFIXES:
                continue

            source_ref = f"{path.name}!{info.filename}"
            try:
                raw = archive.read(info).decode("utf-8")
            except (UnicodeDecodeError, zipfile.BadZipFile) as e:
                logger.warning(f"Skipping unreadable member {source_ref}: {e}")
                continue

            if suffix in MARKUP_SUFFIXES:
                text = markup_to_text(raw)
            else:
                text = " ".join(raw.split())

            if not text:
                logger.debug(f"Skipping empty member {source_ref}")
                continue

            yield source_ref, text
