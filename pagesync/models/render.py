from typing import List

from pydantic import BaseModel, ConfigDict, Field, model_validator


class RenderFlags(BaseModel):
    """Feature switches for the markdown renderer.

    Frozen so that a flag set can be part of the render cache fingerprint.
    """

    model_config = ConfigDict(frozen=True)

    html: bool = True
    tables: bool = True
    strikethrough: bool = True
    toc_min_level: int = Field(default=2, ge=1, le=6)
    toc_max_level: int = Field(default=4, ge=1, le=6)
    lazy_images: bool = True
    mangle_emails: bool = True
    text_colors: bool = False
    highlight: bool = True
    line_numbers: bool = False
    linkify: bool = True
    typographer: bool = True
    footnotes: bool = True
    heading_links: bool = True
    inline_code_class: str = "inline-code-block"

    @model_validator(mode="after")
    def _check_toc_range(self) -> "RenderFlags":
        if self.toc_min_level > self.toc_max_level:
            raise ValueError("toc_min_level must not exceed toc_max_level")
        return self


class TocEntry(BaseModel):
    level: int
    text: str
    anchor: str


class RenderFeatures(BaseModel):
    """What the renderer found in the document, for client-side asset loading."""

    languages: List[str] = Field(default_factory=list)
    images: bool = False


class RenderResult(BaseModel):
    html: str
    toc: List[TocEntry]
    features: RenderFeatures = Field(default_factory=RenderFeatures)
