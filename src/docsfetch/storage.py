"""On-disk documentation cache.

Layout under the cache root::

    <package>/
        meta.json                              # CacheMeta
        <NNN>-<category>/
            <NNN>-<title-slug>.html
            <NNN>-<title-slug>.meta.json       # DocumentMetadata
    package-docs.json                          # ResolutionRecords

StorageManager is the only writer to this tree. Every file is written
atomically (temp file + ``os.replace``) and every OSError surfaces as a
StorageError so that the crawler can abort just the affected package.
"""

from __future__ import annotations

import json
import os
import re
import shutil
from pathlib import Path
from typing import TYPE_CHECKING
from urllib.parse import quote, unquote

import structlog
from pydantic import ValidationError

from docsfetch.errors import StorageError
from docsfetch.models.crawl import CacheMeta, DocumentMetadata
from docsfetch.models.package import ResolutionRecord

if TYPE_CHECKING:
    from collections.abc import Iterator

log = structlog.get_logger()

META_FILE_NAME = "meta.json"
RESOLUTION_FILE_NAME = "package-docs.json"
DOCUMENT_META_SUFFIX = ".meta.json"

_UNSAFE_CHARS = re.compile(r"[^a-z0-9-]+")
_DASH_RUNS = re.compile(r"-{2,}")


def slugify(text: str, fallback: str = "page") -> str:
    """Lowercase, hyphen-separated, filesystem-safe form of text."""
    slug = _DASH_RUNS.sub("-", _UNSAFE_CHARS.sub("-", text.lower())).strip("-")
    return slug[:80].rstrip("-") or fallback


def package_dir_name(package_name: str) -> str:
    """Reversible directory name for a package: ``@scope/pkg`` → ``@scope%2Fpkg``.

    Case, dots and underscores are kept so distinct names never share a
    directory. A leading dot is escaped so no name maps to ``.`` or ``..``.
    """
    name = quote(package_name, safe="@._-~") or "%00"
    if name.startswith("."):
        name = "%2E" + name[1:]
    return name


def _format_number(number: int) -> str:
    return f"{number:03d}"


class StorageManager:
    def __init__(self, cache_dir: str | Path) -> None:
        self.cache_dir = Path(cache_dir).expanduser()
        # Paths written since the last clear, for collision detection
        self._written: set[Path] = set()

    # ------------------------------------------------------------------
    # Package directories
    # ------------------------------------------------------------------

    def ensure_cache_dir(self) -> None:
        """Create the cache root. Raises StorageError if it cannot be written."""
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            marker = self.cache_dir / ".write-test"
            marker.write_bytes(b"")
            marker.unlink()
        except OSError as exc:
            raise StorageError(
                f"Cache directory is not writable: {self.cache_dir}: {exc}",
                suggestion="Set cache.dir or pass --cache-dir.",
            ) from exc

    def package_dir(self, package_name: str) -> Path:
        return self.cache_dir / package_dir_name(package_name)

    def clear_package_dir(self, package_name: str) -> None:
        """Remove everything cached for a package and start a fresh run."""
        package_dir = self.package_dir(package_name)
        try:
            if package_dir.exists():
                shutil.rmtree(package_dir)
                log.info("package_cache_cleared", package=package_name, path=str(package_dir))
            package_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(
                f"Could not reset cache directory {package_dir}: {exc}",
                suggestion="Check that the cache directory is writable.",
            ) from exc
        self._written.clear()

    def list_packages(self) -> list[str]:
        """Names of every cached package, sorted."""
        if not self.cache_dir.is_dir():
            return []
        return sorted(
            unquote(entry.name)
            for entry in self.cache_dir.iterdir()
            if entry.is_dir() and (entry / META_FILE_NAME).is_file()
        )

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def save_document(
        self,
        package_name: str,
        category: str,
        title: str,
        html: str,
        metadata: DocumentMetadata,
        section_number: int,
        page_number: int,
    ) -> Path:
        """Write one page and its metadata sidecar. Returns the .html path."""
        section_dir = self.package_dir(package_name) / (
            f"{_format_number(section_number)}-{slugify(category, fallback='section')}"
        )
        stem = f"{_format_number(page_number)}-{slugify(title)}"

        html_path = section_dir / f"{stem}.html"
        suffix = 2
        while html_path in self._written or html_path.exists():
            html_path = section_dir / f"{stem}-{suffix}.html"
            suffix += 1
        meta_path = html_path.with_name(html_path.stem + DOCUMENT_META_SUFFIX)

        try:
            section_dir.mkdir(parents=True, exist_ok=True)
            _atomic_write(html_path, html.encode("utf-8"))
            _atomic_write(meta_path, _dump_json(metadata.model_dump(mode="json", by_alias=True)))
        except OSError as exc:
            raise StorageError(
                f"Could not write {html_path}: {exc}",
                suggestion="Check free disk space and cache directory permissions.",
            ) from exc

        self._written.add(html_path)
        log.debug("document_saved", package=package_name, path=str(html_path))
        return html_path

    def iter_documents(
        self, package_name: str | None = None
    ) -> Iterator[tuple[str, DocumentMetadata, Path]]:
        """Yield (package name, metadata, html path) for cached pages.

        Sidecars that cannot be parsed are skipped with a warning.
        """
        names = [package_name] if package_name is not None else self.list_packages()
        for name in names:
            package_dir = self.package_dir(name)
            if not package_dir.is_dir():
                continue
            for meta_path in sorted(package_dir.glob(f"*/*{DOCUMENT_META_SUFFIX}")):
                html_path = meta_path.with_name(
                    meta_path.name.removesuffix(DOCUMENT_META_SUFFIX) + ".html"
                )
                if not html_path.is_file():
                    continue
                try:
                    metadata = DocumentMetadata.model_validate_json(meta_path.read_bytes())
                except (OSError, ValidationError) as exc:
                    log.warning("document_meta_unreadable", path=str(meta_path), error=str(exc))
                    continue
                yield name, metadata, html_path

    # ------------------------------------------------------------------
    # Package metadata
    # ------------------------------------------------------------------

    def save_meta(self, package_name: str, meta: CacheMeta) -> Path:
        path = self.package_dir(package_name) / META_FILE_NAME
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            _atomic_write(path, _dump_json(meta.model_dump(mode="json", by_alias=True)))
        except OSError as exc:
            raise StorageError(f"Could not write {path}: {exc}") from exc
        log.debug("cache_meta_saved", package=package_name, path=str(path))
        return path

    def load_meta(self, package_name: str) -> CacheMeta | None:
        """Return the stored CacheMeta, or None if missing or unreadable."""
        path = self.package_dir(package_name) / META_FILE_NAME
        if not path.is_file():
            return None
        try:
            return CacheMeta.model_validate_json(path.read_bytes())
        except (OSError, ValidationError) as exc:
            log.warning("cache_meta_corrupt", package=package_name, path=str(path), error=str(exc))
            return None

    # ------------------------------------------------------------------
    # Resolution records
    # ------------------------------------------------------------------

    def load_resolution_records(self) -> dict[str, ResolutionRecord]:
        path = self.cache_dir / RESOLUTION_FILE_NAME
        if not path.is_file():
            return {}
        try:
            raw = json.loads(path.read_bytes())
            entries = raw.get("packages", {}) if isinstance(raw, dict) else {}
            return {
                name: ResolutionRecord.model_validate(entry) for name, entry in entries.items()
            }
        except (OSError, ValueError, AttributeError) as exc:
            # ValidationError is a ValueError; a broken store just means no history
            log.warning("resolution_records_corrupt", path=str(path), error=str(exc))
            return {}

    def save_resolution_records(self, records: dict[str, ResolutionRecord]) -> None:
        path = self.cache_dir / RESOLUTION_FILE_NAME
        payload = {
            "packages": {
                name: record.model_dump(mode="json", by_alias=True)
                for name, record in sorted(records.items())
            }
        }
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            _atomic_write(path, _dump_json(payload))
        except OSError as exc:
            raise StorageError(f"Could not write {path}: {exc}") from exc


def _dump_json(data: object) -> bytes:
    return (json.dumps(data, indent=2, ensure_ascii=False) + "\n").encode("utf-8")


def _atomic_write(path: Path, data: bytes) -> None:
    tmp_path = path.with_name(path.name + ".tmp")
    try:
        with tmp_path.open("wb") as file_obj:
            file_obj.write(data)
            file_obj.flush()
            os.fsync(file_obj.fileno())
        os.replace(tmp_path, path)
    except OSError:
        tmp_path.unlink(missing_ok=True)
        raise
