"""Application configuration via environment variables."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Project
    PROJECT_NAME: str = "Level PID Simulator"
    VERSION: str = "0.1.0"
    API_V1_STR: str = "/api/v1"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    RELOAD: bool = False

    # Control loop
    TICK_PERIOD_S: float = 0.1
    HISTORY_LENGTH: int = 100
    FILTER_COEFF: float = 0.2
    DEFAULT_SETPOINT: float = 46.7681
    MAX_LOOPS: int = 5

    # WebSocket
    WS_IDLE_TIMEOUT_S: float = 5.0

    # CORS
    BACKEND_CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:8000",
    ]

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
