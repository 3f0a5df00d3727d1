"""
IndexSettings - explicit configuration passed into every entry point.

Built by AppConfig.to_settings() from the layered YAML configuration, or
constructed directly by library callers and tests.
"""

import os
from pathlib import Path
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_LANGUAGE = "English"

DEFAULT_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif", ".bmp", ".webp", ".tiff", ".tif")

SUPPORTED_LANGUAGES = (
    "Afrikaans", "Akan", "Albanian", "Amharic", "Arabic", "Armenian",
    "Azerbaijani", "Basque", "Belarusian", "Bemba", "Bengali", "Bihari",
    "Bosnian", "Breton", "Bulgarian", "Cambodian", "Catalan", "Cherokee",
    "Chichewa", "Chinese (Simplified)", "Chinese (Traditional)", "Corsican",
    "Croatian", "Czech", "Danish", "Dutch", "English", "Esperanto",
    "Estonian", "Ewe", "Faroese", "Filipino", "Finnish", "French",
    "Frisian", "Ga", "Galician", "Georgian", "German", "Greek", "Guarani",
    "Gujarati", "Haitian Creole", "Hausa", "Hawaiian", "Hebrew", "Hindi",
    "Hungarian", "Icelandic", "Igbo", "Indonesian", "Interlingua", "Irish",
    "Italian", "Japanese", "Javanese", "Kannada", "Kazakh", "Kinyarwanda",
    "Kirundi", "Kongo", "Korean", "Krio (Sierra Leone)", "Kurdish",
    "Kurdish (Soranî)", "Kyrgyz", "Laothian", "Latin", "Latvian",
    "Lingala", "Lithuanian", "Lozi", "Luganda", "Luo", "Macedonian",
    "Malagasy", "Malay", "Malayalam", "Maltese", "Maori", "Marathi",
    "Mauritian Creole", "Moldavian", "Mongolian", "Montenegrin", "Nepali",
    "Nigerian Pidgin", "Northern Sotho", "Norwegian", "Norwegian (Nynorsk)",
    "Occitan", "Oriya", "Oromo", "Pashto", "Persian", "Polish",
    "Portuguese (Brazil)", "Portuguese (Portugal)", "Punjabi", "Quechua",
    "Romanian", "Romansh", "Runyakitara", "Russian", "Scots Gaelic",
    "Serbian", "Serbo-Croatian", "Sesotho", "Setswana",
    "Seychellois Creole", "Shona", "Sindhi", "Sinhalese", "Slovak",
    "Slovenian", "Somali", "Spanish", "Spanish (Latin American)",
    "Sundanese", "Swahili", "Swedish", "Tajik", "Tamil", "Tatar", "Telugu",
    "Thai", "Tigrinya", "Tonga", "Tshiluba", "Tumbuka", "Turkish",
    "Turkmen", "Twi", "Uighur", "Ukrainian", "Urdu", "Uzbek", "Vietnamese",
    "Welsh", "Wolof", "Xhosa", "Yiddish", "Yoruba", "Zulu",
)

_LANGUAGE_LOOKUP = {name.lower(): name for name in SUPPORTED_LANGUAGES}


def normalize_language(language: str) -> str:
    """Return the canonical language name, case-insensitively."""
    canonical = _LANGUAGE_LOOKUP.get(str(language).strip().lower())
    if canonical is None:
        raise ValueError(f"Unsupported language: {language!r}")
    return canonical


class IndexSettings(BaseModel):
    """Settings describing where images live and how the index is built."""

    model_config = ConfigDict(frozen=True)

    database_path: Path = Field(
        default=Path("photoindex.sqlite3"),
        description="Location of the embedded database file.",
    )
    image_directories: Tuple[str, ...] = Field(default=(), description="Root folders to index.")
    path_filters: Tuple[str, ...] = Field(
        default=(),
        description="Substring or wildcard patterns; when set, only matching paths are indexed.",
    )
    language: str = Field(default=DEFAULT_LANGUAGE, description="Language of indexed descriptions.")
    default_language: str = Field(default=DEFAULT_LANGUAGE, description="Fallback description language.")
    embed_images: bool = Field(default=False, description="Store image bytes as base64 in the index.")
    recurse: bool = Field(default=True, description="Descend into sub-directories of each root.")
    extensions: Tuple[str, ...] = Field(default=DEFAULT_EXTENSIONS, description="Image file allow-list.")
    batch_size: int = Field(default=500, ge=1, description="Files per write transaction.")
    max_workers: Optional[int] = Field(default=None, ge=1, description="Sidecar reader threads (None = CPU count).")
    max_embed_bytes: int = Field(default=20 * 1024 * 1024, ge=0, description="Size ceiling for embedded images.")
    max_age_hours: Optional[float] = Field(default=None, gt=0, description="Rebuild when the index is older.")
    read_embedded_exif: bool = Field(default=True, description="Read EXIF from the image when no exif sidecar exists.")
    sidecar_separator: str = Field(default=":", min_length=1, description="Joins image path and stream name.")

    @field_validator("language", "default_language")
    @classmethod
    def _canonical_language(cls, value: str) -> str:
        return normalize_language(value)

    @field_validator("database_path", mode="before")
    @classmethod
    def _expand_database_path(cls, value):
        return Path(os.path.expandvars(os.path.expanduser(str(value))))

    @field_validator("extensions", mode="before")
    @classmethod
    def _dotted_extensions(cls, value):
        if isinstance(value, str):
            value = [value]
        return tuple(
            (e if e.startswith(".") else f".{e}").lower() for e in value
        )

    @field_validator("image_directories", "path_filters", mode="before")
    @classmethod
    def _as_tuple(cls, value):
        if value is None:
            return ()
        if isinstance(value, (str, Path)):
            return (str(value),)
        return tuple(str(v) for v in value)

    @property
    def worker_count(self) -> int:
        return self.max_workers or os.cpu_count() or 1

    @property
    def roots(self) -> List[Path]:
        return [Path(d) for d in self.image_directories]
