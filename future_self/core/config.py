"""Application configuration."""
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Vapi (call platform + persona creation)
    vapi_api_key: str
    vapi_base_url: str = "https://api.vapi.ai"
    vapi_timeout_seconds: float = 30.0
    counselor_assistant_id: Optional[str] = None

    # ElevenLabs (voice cloning)
    elevenlabs_api_key: str
    elevenlabs_base_url: str = "https://api.elevenlabs.io"

    # Database (call archive)
    database_url: str

    # Audio capture
    clone_threshold_seconds: float = 30.0  # 15.0 is handy when testing short calls
    audio_buffer_max_chunks: int = 1000
    audio_connect_timeout_seconds: float = 10.0
    audio_max_reconnect_attempts: int = 3
    audio_reconnect_base_delay_seconds: float = 1.0
    audio_reconnect_max_delay_seconds: float = 10.0
    default_sample_rate: int = 16000
    sample_rate_min_observations: int = 5
    sample_rate_stability_tolerance: float = 0.02
    sample_rate_band_tolerance: float = 0.05
    audio_export_dir: Optional[str] = None

    # Voice cloning
    clone_request_timeout_seconds: float = 120.0
    clone_connect_timeout_seconds: float = 10.0
    clone_max_attempts: int = 3
    clone_retry_base_delay_seconds: float = 2.0
    clone_retry_max_delay_seconds: float = 20.0
    min_clone_audio_bytes: int = 5000
    max_clone_audio_bytes: int = 50_000_000
    clone_remove_background_noise: bool = True
    recording_download_timeout_seconds: float = 60.0

    # Future self persona
    persona_max_attempts: int = 3
    persona_retry_base_delay_seconds: float = 10.0
    persona_retry_max_delay_seconds: float = 40.0
    default_voice_provider: str = "vapi"
    default_voice_id: str = "jennifer"
    cloned_voice_provider: str = "11labs"
    persona_model: str = "gpt-4o"
    persona_temperature: float = 0.8
    persona_max_duration_seconds: int = 180

    # Call-state scheduling
    interruption_prepare_seconds: float = 30.0
    fallback_timeout_seconds: float = 75.0
    clone_poll_interval_seconds: float = 5.0
    clone_poll_ceiling_seconds: float = 300.0
    ready_delay_seconds: float = 3.0
    finished_session_retention_seconds: float = 3600.0  # How long ended sessions stay queryable

    # Transcript fact extraction
    problem_min_length: int = 50

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"
    cors_origins: List[str] = ["*"]

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )


settings = Settings()
