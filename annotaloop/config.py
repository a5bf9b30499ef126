from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=False,
        extra='ignore',
    )

    app_name: str = 'AnnotaLoop Export Engine'

    data_dir: Path = Field(default=Path('./data'))
    max_pdf_bytes: int = 50 * 1024 * 1024

    # Viewport used when indexing pages. Highlight geometry is expressed in
    # pixels of this viewport.
    render_scale: float = Field(
        default=1.0,
        gt=0,
        validation_alias=AliasChoices('ANNOTALOOP_RENDER_SCALE', 'RENDER_SCALE'),
    )

    # Text matching
    fuzzy_min_length: int = 16
    fuzzy_fragment_ratio: float = 0.3
    fuzzy_fragment_min: int = 8
    fuzzy_fragment_max: int = 24
    fuzzy_span_ratio: float = 1.4

    # Box merging, in pixels at render_scale == 1.0
    merge_gap_min: float = -5.0
    merge_gap_max: float = 15.0

    # Overlay
    highlight_opacity: float = 0.35
    comment_icon: str = 'Comment'

    # Summary report
    report_brand: str = 'AnnotaLoop'
    report_tagline: str = 'AI-assisted document annotation with human-in-the-loop workflows'
    report_running_title: str = 'AnnotaLoop Summary'
    report_version: str = '1.0'
    report_font_regular: str = 'Helvetica'
    report_font_bold: str = 'Helvetica-Bold'
    report_font_mono: str = 'Courier'


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
