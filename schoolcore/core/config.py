from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field(..., alias="DATABASE_URL")

    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")

    log_level: str = Field("INFO", alias="LOG_LEVEL")

    # Sections created with a new class when the request carries none
    default_section_names: List[str] = Field(default_factory=lambda: ["A"], alias="DEFAULT_SECTION_NAMES")
    default_section_capacity: int = Field(40, ge=1, alias="DEFAULT_SECTION_CAPACITY")
    bulk_class_action_limit: int = Field(500, ge=1, alias="BULK_CLASS_ACTION_LIMIT")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
