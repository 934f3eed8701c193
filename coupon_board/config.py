from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    APP_NAME: str = "Coupon Board"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # coupons.json and users.json live here
    DATA_DIR: str = "data"

    # stand-in identity, there is no authentication
    GUEST_USER: str = "Guest User"

    HOST: str = "127.0.0.1"
    PORT: int = 8000


settings = Settings()
