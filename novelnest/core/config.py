from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    app_name: str = Field(default="NovelNest", alias="APP_NAME")
    app_env: Literal["dev", "staging", "prod"] = Field(default="dev", alias="APP_ENV")
    app_public_url: str = Field(default="http://localhost:5173", alias="APP_PUBLIC_URL")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    supabase_url: str = Field(
        default="http://localhost:54321",
        alias="SUPABASE_URL",
        validation_alias=AliasChoices("SUPABASE_URL", "VITE_SUPABASE_URL"),
    )
    supabase_anon_key: str = Field(
        default="",
        alias="SUPABASE_ANON_KEY",
        validation_alias=AliasChoices("SUPABASE_ANON_KEY", "VITE_SUPABASE_ANON_KEY"),
    )
    supabase_jwt_secret: str = Field(default="", alias="SUPABASE_JWT_SECRET")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    jwt_audience: str = Field(default="authenticated", alias="JWT_AUDIENCE")
    jwt_exp_leeway_seconds: int = Field(default=30, alias="JWT_EXP_LEEWAY_SECONDS")
    http_timeout_seconds: float = Field(default=20.0, alias="HTTP_TIMEOUT_SECONDS")

    catalog_page_size: int = Field(default=10, alias="CATALOG_PAGE_SIZE")
    reviews_page_size: int = Field(default=5, alias="REVIEWS_PAGE_SIZE")
    library_page_size: int = Field(default=20, alias="LIBRARY_PAGE_SIZE")
    related_books_limit: int = Field(default=4, alias="RELATED_BOOKS_LIMIT")
    search_debounce_seconds: float = Field(default=0.5, alias="SEARCH_DEBOUNCE_SECONDS")
    min_password_length: int = Field(default=6, alias="MIN_PASSWORD_LENGTH")

    covers_bucket: str = Field(default="covers", alias="COVERS_BUCKET")
    pdfs_bucket: str = Field(default="pdfs", alias="PDFS_BUCKET")
    avatars_bucket: str = Field(default="avatars", alias="AVATARS_BUCKET")

    @property
    def rest_url(self) -> str:
        return f"{self.supabase_url.rstrip('/')}/rest/v1"

    @property
    def auth_url(self) -> str:
        return f"{self.supabase_url.rstrip('/')}/auth/v1"

    @property
    def storage_url(self) -> str:
        return f"{self.supabase_url.rstrip('/')}/storage/v1"

    def book_url(self, book_id: int | str) -> str:
        return f"{self.app_public_url.rstrip('/')}/book/{book_id}"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
