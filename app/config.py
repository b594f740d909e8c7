from __future__ import annotations

import os
from pathlib import Path
from typing import ClassVar

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic_settings.sources import PydanticBaseSettingsSource, YamlConfigSettingsSource

from adapters.layout.placement import PlacementConfig
from domain.models import Point, Size
from domain.services.match_content import MatchConfig
from domain.services.reconcile_scene import ReconcilerConfig

DEFAULT_CONFIG_PATH = Path("config/app.yaml")
LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


class ReconcilerSettings(BaseModel):
    settle_delay_seconds: float = Field(default=0.1, ge=0)
    max_multi_depth: int = Field(default=8, ge=1)
    continuous_mode: bool = True
    history_limit: int = Field(default=50, ge=2)

    def to_config(self) -> ReconcilerConfig:
        return ReconcilerConfig(
            settle_delay_seconds=self.settle_delay_seconds,
            max_multi_depth=self.max_multi_depth,
        )


class MatchingSettings(BaseModel):
    similarity_threshold: float = Field(default=0.7, ge=0, le=1)
    exact_match_threshold: float = Field(default=0.95, ge=0, le=1)
    topic_match_score: float = Field(default=1.5, ge=0)
    acronym_max_length: int = Field(default=5, ge=0)

    def to_config(self) -> MatchConfig:
        return MatchConfig(
            similarity_threshold=self.similarity_threshold,
            exact_match_threshold=self.exact_match_threshold,
            topic_match_score=self.topic_match_score,
            acronym_max_length=self.acronym_max_length,
        )


class LayoutSettings(BaseModel):
    viewport_center_x: float = 600.0
    viewport_center_y: float = 400.0
    spacing: float = Field(default=200.0, gt=0)
    collision_padding: float = Field(default=50.0, ge=0)
    min_margin: float = Field(default=100.0, ge=0)
    note_offset_x: float = 100.0
    note_width: float = Field(default=300.0, gt=0)
    note_height: float = Field(default=150.0, gt=0)
    diagram_width: float = Field(default=400.0, gt=0)
    diagram_height: float = Field(default=300.0, gt=0)

    def to_config(self) -> PlacementConfig:
        return PlacementConfig(
            viewport_center=Point(self.viewport_center_x, self.viewport_center_y),
            spacing=self.spacing,
            collision_padding=self.collision_padding,
            min_margin=self.min_margin,
            note_offset_x=self.note_offset_x,
            note_size=Size(self.note_width, self.note_height),
            diagram_size=Size(self.diagram_width, self.diagram_height),
        )


class WebSettings(BaseModel):
    title: str = "Voice Canvas"
    scene_dir: Path = Path("data/scenes")
    excalidraw_base_url: str = "https://excalidraw.com"
    max_url_length: int = Field(default=8000, gt=0)
    max_sessions: int = Field(default=256, gt=0)


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="VCANVAS_", env_nested_delimiter="__")

    reconciler: ReconcilerSettings = ReconcilerSettings()
    matching: MatchingSettings = MatchingSettings()
    layout: LayoutSettings = LayoutSettings()
    web: WebSettings = WebSettings()
    log_level: str = "INFO"

    _yaml_path: ClassVar[Path | None] = None

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, value: object) -> str:
        level = str(value or "INFO").strip().upper()
        if level not in LOG_LEVELS:
            msg = f"log_level must be one of {sorted(LOG_LEVELS)}"
            raise ValueError(msg)
        return level

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        sources: list[PydanticBaseSettingsSource] = [
            init_settings,
            env_settings,
            dotenv_settings,
            file_secret_settings,
        ]
        if cls._yaml_path:
            sources.append(YamlConfigSettingsSource(settings_cls, yaml_file=cls._yaml_path))
        return tuple(sources)


def load_settings(config_path: Path | None = None) -> AppSettings:
    env_path = os.getenv("VCANVAS_CONFIG_PATH")
    resolved_path: Path | None = None

    if config_path is not None:
        resolved_path = config_path
    elif env_path:
        resolved_path = Path(env_path)
    elif DEFAULT_CONFIG_PATH.exists():
        resolved_path = DEFAULT_CONFIG_PATH

    previous = AppSettings._yaml_path
    try:
        if resolved_path is not None:
            if not resolved_path.exists():
                msg = f"Config file not found: {resolved_path}"
                raise FileNotFoundError(msg)
            AppSettings._yaml_path = resolved_path
        return AppSettings()
    finally:
        AppSettings._yaml_path = previous
