from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=False,
        extra='ignore',
    )

    app_name: str = 'reportfill'

    data_dir: Path = Field(default=Path('./data'))

    # Template lookup
    template_dir: Path = Field(default=Path('./templates'))
    # Comma-separated extra directories tried after template_dir.
    template_search_dirs: str = ''
    template_prefix: str = 'PoC_Profile'
    default_combo: str = 'CT'

    # Fonts. Missing files fall back to the base-14 Helvetica pair.
    font_dir: Path = Field(default=Path('./fonts'))
    font_regular_file: str = 'Regular.ttf'
    font_bold_file: str = 'Bold.ttf'

    # Remote radar chart rendering
    chart_base_url: str = 'https://quickchart.io/chart'
    chart_width: int = 700
    chart_height: int = 700
    chart_timeout_seconds: float = 15.0
    chart_cache_bust_param: str = 'cb'

    # HTTP surface
    server_host: str = '0.0.0.0'
    server_port: int = 8080
    max_payload_bytes: int = 20 * 1024 * 1024
    expose_error_details: bool = False
    allow_debug: bool = True
    log_level: str = 'INFO'

    def template_search_paths(self) -> list[Path]:
        paths: list[Path] = [Path(self.template_dir)]
        for item in self.template_search_dirs.split(','):
            normalized = item.strip()
            if not normalized:
                continue
            paths.append(Path(normalized))
        paths.append(Path('./templates'))
        paths.append(Path(__file__).resolve().parents[1] / 'templates')

        unique: list[Path] = []
        seen: set[str] = set()
        for path in paths:
            token = str(path)
            if token in seen:
                continue
            seen.add(token)
            unique.append(path)
        return unique


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
