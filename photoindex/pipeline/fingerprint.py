"""DatabaseFingerprint - summary of the settings a database was built with."""

import hashlib
import unicodedata
from pathlib import Path
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict

from photoindex.utils.settings import IndexSettings


def _normalize_root(root) -> str:
    return unicodedata.normalize("NFC", str(Path(root).expanduser().absolute()))


class DatabaseFingerprint(BaseModel):
    """
    Configuration under which a database was built.

    Two fingerprints are equal when roots, path filters, language, embed
    flag, recursion and extension list match; root and filter order is
    irrelevant.
    """

    model_config = ConfigDict(frozen=True)

    roots: Tuple[str, ...] = ()
    path_filters: Tuple[str, ...] = ()
    language: str
    embed_images: bool = False
    recurse: bool = True
    extensions: Tuple[str, ...] = ()

    @classmethod
    def from_settings(
        cls,
        settings: IndexSettings,
        roots=None,
        path_filters=None,
        language: Optional[str] = None,
        embed_images: Optional[bool] = None,
    ) -> "DatabaseFingerprint":
        roots = settings.image_directories if roots is None else roots
        path_filters = settings.path_filters if path_filters is None else path_filters
        return cls(
            roots=tuple(sorted({_normalize_root(r) for r in roots}, key=str.casefold)),
            path_filters=tuple(sorted(set(path_filters))),
            language=language or settings.language,
            embed_images=settings.embed_images if embed_images is None else embed_images,
            recurse=settings.recurse,
            extensions=tuple(sorted(set(settings.extensions))),
        )

    def to_json(self) -> str:
        return self.model_dump_json()

    @property
    def digest(self) -> str:
        return hashlib.sha256(self.to_json().encode("utf-8")).hexdigest()
