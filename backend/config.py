from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List


class Settings(BaseSettings):
    gemini_api_key: str = ""
    mystery_model: str = "gemini-2.5-flash"
    narration_model: str = "gemini-2.5-flash"
    # Content generation: attempts before GenerationFailed, pause between attempts
    generation_attempts: int = 3
    generation_retry_delay: float = 1.0
    # Built-in case used when the LLM is unavailable or returns garbage
    mystery_fallback_enabled: bool = True

    # Phase durations in seconds
    investigation_seconds: int = 600
    discussion_seconds: int = 300
    voting_seconds: int = 120
    timer_tick_seconds: float = 1.0

    min_players: int = 2
    max_players: int = 6
    discovery_chance: float = 0.3
    correct_vote_points: int = 100
    max_message_length: int = 500

    # Games older than this are reaped (memory-resident store, no durability)
    session_ttl_seconds: int = 4 * 60 * 60
    reaper_interval_seconds: int = 300

    # CORS origins: set ALLOWED_ORIGINS env var for production (JSON list)
    allowed_origins: List[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
    ]
    debug: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
    )

    @property
    def phase_durations(self) -> dict:
        return {
            "investigation": self.investigation_seconds,
            "discussion": self.discussion_seconds,
            "voting": self.voting_seconds,
        }


settings = Settings()
