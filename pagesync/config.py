"""Runtime configuration loaded from the environment (prefix ``PAGESYNC_``) or ``.env``."""

from typing import List, Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="PAGESYNC_", env_file=".env", extra="ignore")

    # Server
    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "INFO"

    # Store
    database_url: str = "sqlite:///./pagesync.db"

    # Content source
    datasources: List[str] = Field(default_factory=list)
    source_base_url: str = "http://localhost:8080"
    source_token: Optional[str] = None
    source_timeout: float = 15.0

    # Sync trigger
    sync_secret: Optional[str] = None
    removal_policy: Literal["keep", "tombstone"] = "keep"

    # Retrieval bounds
    search_limit: int = Field(default=5, ge=1, le=50)
    search_scan_limit: int = Field(default=200, ge=1)
    list_default_limit: int = Field(default=20, ge=1)
    list_max_limit: int = Field(default=100, ge=1)

    # Markdown rendering
    render_cache_size: int = Field(default=256, ge=0)
    markdown_html: bool = True
    markdown_lazy_images: bool = True
    markdown_mangle_emails: bool = True
    markdown_text_colors: bool = False
    markdown_highlight: bool = True
    markdown_line_numbers: bool = False
    markdown_linkify: bool = True
    markdown_typographer: bool = True
    markdown_footnotes: bool = True
    markdown_heading_links: bool = True
    markdown_inline_code_class: str = "inline-code-block"
    toc_min_level: int = Field(default=2, ge=1, le=6)
    toc_max_level: int = Field(default=4, ge=1, le=6)

    # Site metadata used by feeds and sitemaps
    site_title: str = "pagesync"
    site_subtitle: Optional[str] = None
    site_url: str = "http://localhost:8000/"
    site_author: str = "pagesync"
    site_lang: str = "en"


settings = Settings()
