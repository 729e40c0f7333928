import os

from .env import env_bool, env_float, env_int


class Settings:
    ENV: str = os.getenv("ENV", "dev")
    DEV_MODE: bool = ENV.lower() == "dev"
    DB_URL: str = os.getenv("DB_URL", "sqlite:///./chat.db")
    DB_POOL_SIZE: int = env_int("DB_POOL_SIZE", default=5)
    DB_POOL_TIMEOUT_SECS: float = env_float("DB_POOL_TIMEOUT_SECS", default=10.0)
    DB_ECHO: bool = env_bool("DB_ECHO", default=False)
    AUTO_CREATE_SCHEMA: bool = env_bool("AUTO_CREATE_SCHEMA", default=DEV_MODE)
    # Per-operation deadline; <= 0 disables it
    STORE_OP_TIMEOUT_SECS: float = env_float("STORE_OP_TIMEOUT_SECS", default=5.0)
    # Usernames
    USERNAME_MIN_LEN: int = env_int("USERNAME_MIN_LEN", default=3)
    USERNAME_MAX_LEN: int = env_int("USERNAME_MAX_LEN", default=16)


settings = Settings()

# Harden for non-dev environments
if not settings.DEV_MODE:
    if settings.AUTO_CREATE_SCHEMA:
        raise RuntimeError("AUTO_CREATE_SCHEMA cannot be enabled when ENV!=dev")
    if settings.USERNAME_MIN_LEN < 1 or settings.USERNAME_MAX_LEN < settings.USERNAME_MIN_LEN:
        raise RuntimeError("USERNAME_MIN_LEN/USERNAME_MAX_LEN are inconsistent")
