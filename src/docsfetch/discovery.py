"""Package discovery: scan a workspace for manifests and list third-party deps.

Pure read. Walks the root once, pruning dependency-install directories and
anything matching an exclude glob, then parses every matching manifest.
"""

from __future__ import annotations

import fnmatch
import json
import os
import re
import tomllib
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from docsfetch.errors import DiscoveryError
from docsfetch.models.package import PackageInfo

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

log = structlog.get_logger()

# Never descended into, whatever the exclude patterns say.
ALWAYS_EXCLUDED_DIRS: frozenset[str] = frozenset(
    {"node_modules", ".git", ".venv", "venv", "__pycache__", "site-packages", "bower_components"}
)

_NPM_DEPENDENCY_KEYS = (
    "dependencies",
    "devDependencies",
    "peerDependencies",
    "optionalDependencies",
)
_LOCAL_SPEC_PREFIXES = ("workspace:", "file:", "link:", "portal:")
_VERSION_RE = re.compile(r"(\d+(?:\.\d+)*(?:[-+][0-9A-Za-z.-]+)?)")
_PEP508_NAME_RE = re.compile(r"^\s*([A-Za-z0-9][A-Za-z0-9._-]*)")
_PEP508_PIN_RE = re.compile(r"===?\s*([0-9][^,;\s]*)")
_PEP508_EXTRAS_RE = re.compile(r"^\s*\[[^\]]*\]")


def discover_packages(
    root_dir: str | Path,
    scan_patterns: Iterable[str],
    exclude_patterns: Iterable[str] = (),
    *,
    exclude_packages: Iterable[str] = (),
    exclude_name_patterns: Iterable[str] = (),
) -> list[PackageInfo]:
    """Return the deduplicated third-party dependencies declared under root_dir.

    Raises DiscoveryError when root_dir is missing or no manifest matches.
    """
    root = Path(root_dir).expanduser().resolve()
    if not root.is_dir():
        raise DiscoveryError(
            f"Workspace root does not exist: {root}",
            suggestion="Set scan.root_dir or pass --root.",
        )

    manifests = sorted(find_manifests(root, scan_patterns, exclude_patterns))
    if not manifests:
        raise DiscoveryError(
            f"No manifest files found under {root}",
            suggestion="Check scan.scan_patterns and scan.exclude_patterns.",
        )
    log.info("manifests_found", root=str(root), count=len(manifests))

    workspace_names: set[str] = set()
    found: list[PackageInfo] = []
    for manifest in manifests:
        own_name, packages = _parse_manifest(manifest, root)
        if own_name:
            workspace_names.add(own_name)
        found.extend(packages)

    excluded = set(exclude_packages)
    name_patterns = list(exclude_name_patterns)
    filtered = [
        pkg
        for pkg in found
        if pkg.name not in workspace_names
        and pkg.name not in excluded
        and not any(fnmatch.fnmatchcase(pkg.name, pattern) for pattern in name_patterns)
    ]

    packages = deduplicate_packages(filtered)
    log.info("packages_discovered", count=len(packages), skipped=len(found) - len(filtered))
    return packages


def find_manifests(
    root: Path,
    scan_patterns: Iterable[str],
    exclude_patterns: Iterable[str] = (),
) -> Iterator[Path]:
    """Yield manifest files under root matching any scan pattern."""
    includes = list(scan_patterns)
    excludes = list(exclude_patterns)

    for dirpath, dirnames, filenames in os.walk(root):
        current = Path(dirpath)
        rel_dir = current.relative_to(root).as_posix()
        rel_dir = "" if rel_dir == "." else rel_dir + "/"

        # Prune in place so os.walk never descends into excluded trees
        dirnames[:] = sorted(
            d
            for d in dirnames
            if d not in ALWAYS_EXCLUDED_DIRS
            and not any(_glob_match(f"{rel_dir}{d}/", p) for p in excludes)
        )

        for filename in filenames:
            rel = f"{rel_dir}{filename}"
            if any(_glob_match(rel, p) for p in excludes):
                continue
            if any(_glob_match(rel, p) for p in includes):
                yield current / filename


def deduplicate_packages(packages: Iterable[PackageInfo]) -> list[PackageInfo]:
    """Keep one entry per name: the highest version, first occurrence on ties."""
    unique: dict[str, PackageInfo] = {}
    for pkg in packages:
        existing = unique.get(pkg.name)
        if existing is None or compare_versions(pkg.version, existing.version) > 0:
            unique[pkg.name] = pkg
    return list(unique.values())


def compare_versions(v1: str, v2: str) -> int:
    """Numeric dotted-version comparison. Unparseable versions sort lowest."""
    n1 = _numeric_parts(v1)
    n2 = _numeric_parts(v2)
    if not n1 and not n2:
        return 0
    if not n1:
        return -1
    if not n2:
        return 1

    length = max(len(n1), len(n2))
    n1 += [0] * (length - len(n1))
    n2 += [0] * (length - len(n2))
    return (n1 > n2) - (n1 < n2)


def clean_version_spec(spec: str) -> str:
    """Reduce a declared range (``^1.2.3``, ``>=2,<3``) to its base version."""
    match = _VERSION_RE.search(spec)
    return match.group(1) if match else "latest"


# ---------------------------------------------------------------------------
# Manifest parsing
# ---------------------------------------------------------------------------


def _parse_manifest(manifest: Path, root: Path) -> tuple[str | None, list[PackageInfo]]:
    try:
        if manifest.name == "pyproject.toml":
            return _parse_pyproject(manifest)
        return _parse_package_json(manifest, root)
    except (OSError, ValueError, TypeError, AttributeError, tomllib.TOMLDecodeError):
        # One broken or oddly shaped manifest must not hide the rest of the workspace
        log.warning("manifest_parse_failed", path=str(manifest), exc_info=True)
        return None, []


def _parse_package_json(manifest: Path, root: Path) -> tuple[str | None, list[PackageInfo]]:
    data = json.loads(manifest.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError("package.json must contain an object")

    packages: list[PackageInfo] = []
    for key in _NPM_DEPENDENCY_KEYS:
        deps = data.get(key) or {}
        if not isinstance(deps, dict):
            continue
        for name, spec in deps.items():
            spec = str(spec)
            if spec.startswith(_LOCAL_SPEC_PREFIXES):
                continue
            version = _installed_npm_version(name, manifest.parent, root) or clean_version_spec(
                spec
            )
            packages.append(
                PackageInfo(name=name, version=version, path=str(manifest), ecosystem="npm")
            )

    own_name = data.get("name")
    return (own_name if isinstance(own_name, str) else None), packages


def _parse_pyproject(manifest: Path) -> tuple[str | None, list[PackageInfo]]:
    data = tomllib.loads(manifest.read_text(encoding="utf-8"))
    project = data.get("project", {})

    requirements: list[str] = list(project.get("dependencies", []))
    for extra in project.get("optional-dependencies", {}).values():
        requirements.extend(extra)

    packages: list[PackageInfo] = []
    for requirement in requirements:
        name_match = _PEP508_NAME_RE.match(requirement)
        if name_match is None:
            continue
        # Extras ("httpx[http2]") and markers carry digits that are not versions
        rest = _PEP508_EXTRAS_RE.sub("", requirement[name_match.end() :]).split(";", 1)[0]
        pin = _PEP508_PIN_RE.search(rest)
        version = pin.group(1) if pin else clean_version_spec(rest)
        packages.append(
            PackageInfo(
                name=name_match.group(1).lower(),
                version=version,
                path=str(manifest),
                ecosystem="pypi",
            )
        )

    poetry_deps = data.get("tool", {}).get("poetry", {}).get("dependencies", {})
    for name, spec in poetry_deps.items():
        if name.lower() == "python":
            continue
        if isinstance(spec, dict) and ("path" in spec or "develop" in spec):
            continue  # local checkout, like a file: spec in package.json
        packages.append(
            PackageInfo(
                name=name.lower(),
                version=_poetry_version(spec),
                path=str(manifest),
                ecosystem="pypi",
            )
        )

    own_name = project.get("name")
    return (own_name.lower() if isinstance(own_name, str) else None), packages


def _poetry_version(spec: object) -> str:
    """Version from a Poetry dependency: a string, a table, or a list of tables."""
    if isinstance(spec, list):
        # Multiple-constraint form: the first entry that names a version wins
        spec = next((s for s in spec if isinstance(s, dict) and "version" in s), None)
    if isinstance(spec, dict):
        spec = spec.get("version")
    if isinstance(spec, str):
        return clean_version_spec(spec)
    return "latest"


def _installed_npm_version(name: str, start: Path, root: Path) -> str | None:
    """Version from node_modules/<name>/package.json, searching up to root."""
    current = start
    while True:
        candidate = current / "node_modules" / name / "package.json"
        if candidate.is_file():
            try:
                version = json.loads(candidate.read_text(encoding="utf-8")).get("version")
            except (OSError, ValueError):
                return None
            return version if isinstance(version, str) and version else None
        if current == root or current.parent == current:
            return None
        current = current.parent


def _glob_match(rel_path: str, pattern: str) -> bool:
    """fnmatch with a leading ``**/`` also matching at the root."""
    if fnmatch.fnmatchcase(rel_path, pattern):
        return True
    while pattern.startswith("**/"):
        pattern = pattern[3:]
        if fnmatch.fnmatchcase(rel_path, pattern):
            return True
    return False


def _numeric_parts(version: str) -> list[int]:
    base = re.sub(r"^[^0-9]*", "", version)
    base = re.split(r"[-+]", base, maxsplit=1)[0]
    parts: list[int] = []
    for part in base.split("."):
        digits = re.match(r"\d+", part)
        if digits is None:
            break
        parts.append(int(digits.group()))
    return parts
