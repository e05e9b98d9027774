from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    page_size: int = 4096
    initial_capacity: int = 4096
    checksum_algorithm: str = "sha256"
    lock_files: bool = True
    fsync_on_close: bool = True

    model_config = SettingsConfigDict(env_prefix="ZCOPY_")

    @field_validator("page_size", "initial_capacity")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be positive")
        return value


settings = Settings()


def get_settings() -> Settings:
    return settings
