"""Runtime configuration loaded from environment variables."""

from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Ceilings and rule data consulted by the pipeline."""

    max_file_size_mb: float = Field(
        default=100.0, description="Reject inputs larger than this before parsing."
    )
    max_pages: int = Field(
        default=1000, description="Reject documents with more pages after parsing."
    )
    large_file_warning_mb: float = 100.0

    default_language: str = "en"
    default_creator: str = "PDF Accessibility Audit"

    image_max_size: int = 1024
    image_min_size: int = 10

    # English-only vocabularies, matched case-insensitively
    generic_alt_text: List[str] = [
        "image",
        "photo",
        "picture",
        "graphic",
        "figure",
        "img",
        "icon",
        "logo",
    ]
    redundant_prefixes: List[str] = [
        "image of",
        "picture of",
        "photo of",
        "graphic of",
        "figure of",
        "illustration of",
        "screenshot of",
    ]

    backup_dir: Optional[str] = None
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="PDF_AUDIT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def max_file_size_bytes(self) -> int:
        return int(self.max_file_size_mb * 1024 * 1024)

    @property
    def backup_dir_path(self) -> Optional[Path]:
        return Path(self.backup_dir) if self.backup_dir else None


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
