"""Unit tests for docsfetch.storage."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import pytest

from docsfetch.errors import StorageError
from docsfetch.models.crawl import CacheMeta, DocumentMetadata
from docsfetch.models.package import ResolutionRecord
from docsfetch import storage as storage_module
from docsfetch.storage import StorageManager, package_dir_name, slugify

if TYPE_CHECKING:
    from pathlib import Path

FETCHED_AT = datetime(2026, 3, 1, tzinfo=UTC)


def _metadata(url: str = "https://example.com/docs/guide/install") -> DocumentMetadata:
    return DocumentMetadata(
        url=url,
        title="Installation",
        fetched_at=FETCHED_AT,
        path_segments=["guide", "install"],
        category="guide",
    )


def _save(storage: StorageManager, title: str = "Installation", page: int = 1) -> Path:
    return storage.save_document("react", "guide", title, "<main>x</main>", _metadata(), 2, page)


class TestSlugify:
    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("Getting Started!", "getting-started"),
            ("@scope/pkg", "scope-pkg"),
            ("  --API   Reference-- ", "api-reference"),
            ("", "page"),
            ("日本語", "page"),
        ],
    )
    def test_slugify(self, text: str, expected: str) -> None:
        assert slugify(text) == expected


class TestPackageDirName:
    @pytest.mark.parametrize(
        ("first", "second"),
        [
            ("lodash.merge", "lodash-merge"),
            ("React", "react"),
            ("@scope/pkg", "scope-pkg"),
            ("@scope/pkg", "@scope-pkg"),
            ("a_b", "a-b"),
        ],
    )
    def test_distinct_names_get_distinct_dirs(self, first: str, second: str) -> None:
        assert package_dir_name(first) != package_dir_name(second)

    @pytest.mark.parametrize("name", ["..", ".", ".hidden"])
    def test_never_escapes_cache_root(self, storage: StorageManager, name: str) -> None:
        assert storage.package_dir(name).parent == storage.cache_dir
        assert storage.package_dir(name).name not in (".", "..")

    def test_clearing_one_package_keeps_similar_name(self, storage: StorageManager) -> None:
        storage.save_meta("lodash.merge", CacheMeta(last_fetched=FETCHED_AT))
        storage.clear_package_dir("lodash-merge")

        assert storage.load_meta("lodash.merge") is not None
        assert storage.load_meta("lodash-merge") is None


class TestSaveDocument:
    def test_layout_and_sidecar(self, storage: StorageManager) -> None:
        storage.clear_package_dir("react")
        path = _save(storage)

        assert path == storage.cache_dir / "react" / "002-guide" / "001-installation.html"
        assert path.read_text(encoding="utf-8") == "<main>x</main>"
        sidecar = json.loads(path.with_name("001-installation.meta.json").read_text())
        assert sidecar["url"] == "https://example.com/docs/guide/install"
        assert sidecar["pathSegments"] == ["guide", "install"]
        assert sidecar["fetchedAt"].startswith("2026-03-01")

    def test_scoped_package_dir(self, storage: StorageManager) -> None:
        assert storage.package_dir("@tanstack/react-query").name == "@tanstack%2Freact-query"

    def test_collision_gets_next_free_suffix(self, storage: StorageManager) -> None:
        storage.clear_package_dir("react")
        first = _save(storage)
        second = _save(storage)
        third = _save(storage)

        assert first.name == "001-installation.html"
        assert second.name == "001-installation-2.html"
        assert third.name == "001-installation-3.html"
        assert first.read_text() == "<main>x</main>"
        assert (second.parent / "001-installation-2.meta.json").is_file()

    def test_no_temp_files_left(self, storage: StorageManager) -> None:
        storage.clear_package_dir("react")
        _save(storage)
        assert not list(storage.cache_dir.rglob("*.tmp"))

    def test_failed_write_removes_temp_file(
        self, storage: StorageManager, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        storage.clear_package_dir("react")

        def fail_fsync(fd: int) -> None:
            raise OSError(28, "No space left on device")

        monkeypatch.setattr(storage_module.os, "fsync", fail_fsync)
        with pytest.raises(StorageError):
            _save(storage)
        assert not list(storage.cache_dir.rglob("*.tmp"))

    def test_write_failure_raises_storage_error(self, tmp_path: Path) -> None:
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("file", encoding="utf-8")
        storage = StorageManager(blocker)
        with pytest.raises(StorageError):
            _save(storage)


class TestClearPackageDir:
    def test_removes_previous_files(self, storage: StorageManager) -> None:
        storage.clear_package_dir("react")
        stale = _save(storage, title="Old Page")
        storage.clear_package_dir("react")

        assert not stale.exists()
        assert storage.package_dir("react").is_dir()
        assert list(storage.package_dir("react").iterdir()) == []

    def test_resets_collision_tracking(self, storage: StorageManager) -> None:
        storage.clear_package_dir("react")
        _save(storage)
        storage.clear_package_dir("react")
        assert _save(storage).name == "001-installation.html"


class TestMeta:
    def test_round_trip_uses_camel_case(self, storage: StorageManager) -> None:
        meta = CacheMeta(
            last_fetched=FETCHED_AT,
            base_url="https://react.dev/reference/react",
            project_name="react",
            pages_saved=3,
        )
        path = storage.save_meta("react", meta)

        on_disk = json.loads(path.read_text())
        assert on_disk["lastFetched"].startswith("2026-03-01")
        assert on_disk["baseUrl"] == "https://react.dev/reference/react"
        assert storage.load_meta("react") == meta

    def test_missing(self, storage: StorageManager) -> None:
        assert storage.load_meta("react") is None

    def test_corrupt_treated_as_missing(self, storage: StorageManager) -> None:
        path = storage.package_dir("react") / "meta.json"
        path.parent.mkdir(parents=True)
        path.write_text("{oops", encoding="utf-8")
        assert storage.load_meta("react") is None

    def test_legacy_shape(self, storage: StorageManager) -> None:
        path = storage.package_dir("vue") / "meta.json"
        path.parent.mkdir(parents=True)
        path.write_text(json.dumps({"lastUpdated": "2026-02-01T00:00:00Z"}), encoding="utf-8")
        meta = storage.load_meta("vue")
        assert meta is not None
        assert meta.last_fetched.year == 2026


class TestIterDocuments:
    def test_lists_saved_pages(self, storage: StorageManager) -> None:
        storage.clear_package_dir("react")
        path = _save(storage)
        storage.save_meta("react", CacheMeta(last_fetched=FETCHED_AT))

        documents = list(storage.iter_documents())

        assert [(pkg, meta.title, html) for pkg, meta, html in documents] == [
            ("react", "Installation", path)
        ]
        assert storage.list_packages() == ["react"]

    def test_scoped_package_reported_by_name(self, storage: StorageManager) -> None:
        storage.clear_package_dir("@tanstack/react-query")
        storage.save_document(
            "@tanstack/react-query", "guide", "Queries", "<main>q</main>", _metadata(), 1, 1
        )
        storage.save_meta("@tanstack/react-query", CacheMeta(last_fetched=FETCHED_AT))

        assert storage.list_packages() == ["@tanstack/react-query"]
        assert [pkg for pkg, _, _ in storage.iter_documents()] == ["@tanstack/react-query"]

    def test_unreadable_sidecar_skipped(self, storage: StorageManager) -> None:
        storage.clear_package_dir("react")
        path = _save(storage)
        path.with_name("001-installation.meta.json").write_text("nope", encoding="utf-8")
        assert list(storage.iter_documents("react")) == []


class TestResolutionRecords:
    def test_round_trip(self, storage: StorageManager) -> None:
        records = {
            "no-such-pkg": ResolutionRecord(
                name="no-such-pkg",
                search_attempted=True,
                search_error="package not found in registry",
            )
        }
        storage.save_resolution_records(records)

        raw = json.loads((storage.cache_dir / "package-docs.json").read_text())
        assert raw["packages"]["no-such-pkg"]["searchAttempted"] is True
        assert storage.load_resolution_records() == records

    def test_missing_file(self, storage: StorageManager) -> None:
        assert storage.load_resolution_records() == {}


class TestEnsureCacheDir:
    def test_creates_directory(self, storage: StorageManager) -> None:
        storage.ensure_cache_dir()
        assert storage.cache_dir.is_dir()
        assert list(storage.cache_dir.iterdir()) == []

    def test_unwritable_raises(self, tmp_path: Path) -> None:
        blocker = tmp_path / "file"
        blocker.write_text("x", encoding="utf-8")
        with pytest.raises(StorageError, match="not writable"):
            StorageManager(blocker / "cache").ensure_cache_dir()
