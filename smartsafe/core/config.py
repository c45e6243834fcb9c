from functools import lru_cache
from pydantic import AnyHttpUrl, Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        case_sensitive=True, env_file=".env", extra="ignore", populate_by_name=True
    )

    app_name: str = "SmartSafe Controller"
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")

    database_url: str = Field(default="sqlite+aiosqlite:///./data/smartsafe.db", alias="DATABASE_URL")
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")

    # JWT
    jwt_secret_key: Optional[str] = Field(default=None, alias="JWT_SECRET_KEY")  # HS* signing
    jwt_private_key: Optional[str] = Field(default=None, alias="JWT_PRIVATE_KEY_PEM")
    jwt_public_key: Optional[str] = Field(default=None, alias="JWT_PUBLIC_KEY_PEM")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    jwt_expire_minutes: int = Field(default=60 * 24 * 7, alias="JWT_EXPIRE_MINUTES")
    jwt_issuer: Optional[str] = Field(default=None, alias="JWT_ISSUER")
    jwt_audience: Optional[str] = Field(default=None, alias="JWT_AUDIENCE")
    jwt_clock_skew_seconds: int = Field(default=30, alias="JWT_CLOCK_SKEW_SECONDS")
    auth_cookie_name: str = Field(default="auth-token", alias="AUTH_COOKIE_NAME")
    bcrypt_rounds: int = Field(default=10, alias="BCRYPT_ROUNDS")

    cors_origins: List[AnyHttpUrl] = Field(default_factory=list, alias="CORS_ORIGINS")
    ws_allowed_origins: List[AnyHttpUrl] = Field(default_factory=list, alias="WS_ALLOWED_ORIGINS")
    ws_rate_limit_window: int = Field(default=60, alias="WS_RATE_LIMIT_WINDOW")
    ws_rate_limit_max: int = Field(default=20, alias="WS_RATE_LIMIT_MAX")
    sensor_device_key: Optional[str] = Field(default=None, alias="SENSOR_DEVICE_KEY")

    # Lock actuator (ESP32 servo endpoint, angle appended to the URL)
    actuator_url: Optional[str] = Field(default=None, alias="ACTUATOR_URL")
    actuator_open_angle: str = Field(default="90", alias="ACTUATOR_OPEN_ANGLE")
    actuator_close_angle: str = Field(default="-90", alias="ACTUATOR_CLOSE_ANGLE")
    actuator_timeout_seconds: float = Field(default=2.0, alias="ACTUATOR_TIMEOUT_SECONDS")

    # Sensor pipeline
    smoothing_window: int = Field(default=5, alias="SMOOTHING_WINDOW")
    z_calibration_offset: float = Field(default=5.0, alias="Z_CALIBRATION_OFFSET")
    theft_magnitude_threshold: float = Field(default=50.0, alias="THEFT_MAGNITUDE_THRESHOLD")
    movement_accel_threshold: float = Field(default=5.0, alias="MOVEMENT_ACCEL_THRESHOLD")
    movement_gyro_threshold: float = Field(default=2.0, alias="MOVEMENT_GYRO_THRESHOLD")
    movement_cooldown_ms: int = Field(default=5000, alias="MOVEMENT_COOLDOWN_MS")
    ghost_magnitude_threshold: float = Field(default=0.1, alias="GHOST_MAGNITUDE_THRESHOLD")
    ghost_gyro_threshold: float = Field(default=0.1, alias="GHOST_GYRO_THRESHOLD")
    sample_history_size: int = Field(default=100, alias="SAMPLE_HISTORY_SIZE")
    observer_queue_size: int = Field(default=256, alias="OBSERVER_QUEUE_SIZE")

    # Unlock flow
    face_match_threshold: float = Field(default=0.6, alias="FACE_MATCH_THRESHOLD")
    face_embedding_dimensions: int = Field(default=128, alias="FACE_EMBEDDING_DIMENSIONS")
    face_stabilization_seconds: float = Field(default=1.0, alias="FACE_STABILIZATION_SECONDS")
    voice_unlock_window_seconds: float = Field(default=3.0, alias="VOICE_UNLOCK_WINDOW_SECONDS")
    voice_enrollment_window_seconds: float = Field(default=10.0, alias="VOICE_ENROLLMENT_WINDOW_SECONDS")
    voice_rms_threshold: float = Field(default=0.01, alias="VOICE_RMS_THRESHOLD")
    pin_min_length: int = Field(default=4, alias="PIN_MIN_LENGTH")
    pin_stage_timeout_seconds: float = Field(default=60.0, alias="PIN_STAGE_TIMEOUT_SECONDS")
    voice_stage_timeout_seconds: float = Field(default=30.0, alias="VOICE_STAGE_TIMEOUT_SECONDS")
    pin_attempt_limit: int = Field(default=5, alias="PIN_ATTEMPT_LIMIT")
    pin_attempt_window_seconds: int = Field(default=300, alias="PIN_ATTEMPT_WINDOW_SECONDS")
    session_idle_seconds: float = Field(default=300.0, alias="SESSION_IDLE_SECONDS")


@lru_cache()
def get_settings() -> Settings:
    return Settings()
