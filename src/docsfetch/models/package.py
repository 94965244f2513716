from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


Ecosystem = Literal["npm", "pypi"]


class PackageInfo(BaseModel):
    """A third-party dependency found while scanning the workspace."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: str = "latest"
    path: str  # Manifest file that declared the dependency
    # Registry the name belongs to: package.json deps are npm, pyproject deps PyPI
    ecosystem: Ecosystem = "npm"


class ResolutionRecord(BaseModel):
    """Outcome of the last documentation-URL lookup for a package.

    Persisted in ``package-docs.json`` so that failed searches are not
    repeated on every run.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str
    docs_url: str | None = None
    search_attempted: bool = False
    search_error: str | None = None
    last_attempted: datetime | None = None
