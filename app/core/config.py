from pathlib import Path
from typing import Optional

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


DATA_DIR = Path(__file__).resolve().parent.parent / "modules" / "blitz" / "data"


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )
    name: str = Field(default="derive-a-blitz", alias="APP_NAME")
    version: str = Field(default="v1", alias="API_VERSION")
    port: int = Field(default=9000, alias="APP_PORT")
    mode: str = Field(default="prod", alias="MODE")

    @computed_field
    def is_production(self) -> bool:
        return self.mode != "dev"


class GameSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    # Round timing
    duration_seconds: int = Field(default=60, alias="BLITZ_DURATION_SECONDS")
    tick_interval: float = Field(default=1.0, alias="BLITZ_TICK_INTERVAL")
    reveal_delay: float = Field(default=0.8, alias="BLITZ_REVEAL_DELAY")

    # Bank generation
    repeat_factor: int = Field(default=100, alias="BLITZ_REPEAT_FACTOR")
    seed: Optional[int] = Field(default=None, alias="BLITZ_SEED")
    templates_path: Path = Field(
        default=DATA_DIR / "templates.json", alias="BLITZ_TEMPLATES_PATH"
    )

    # Ranking
    top_threshold: int = Field(default=47, alias="BLITZ_TOP_THRESHOLD")
    world_record_score: int = Field(default=128521, alias="BLITZ_WORLD_RECORD_SCORE")
    leaderboard_path: Path = Field(
        default=DATA_DIR / "leaderboards.json", alias="BLITZ_LEADERBOARD_PATH"
    )

    # Session sweeping
    idle_seconds: int = Field(default=600, alias="BLITZ_IDLE_SECONDS")
    sweep_interval: int = Field(default=60, alias="BLITZ_SWEEP_INTERVAL")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    app: AppSettings = Field(default_factory=lambda: AppSettings())
    game: GameSettings = Field(default_factory=lambda: GameSettings())


settings = Settings()
