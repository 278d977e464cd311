"""
API configuration settings.
"""

from typing import List

from pydantic_settings import BaseSettings


class APIConfig(BaseSettings):
    """API configuration settings."""

    # API Settings
    api_title: str = "Book Review API"
    api_version: str = "1.0.0"
    api_description: str = """
    A REST API for books and the reviews readers leave on them.

    ## Features

    * **Books**: Create, list with author/genre filters, and full-text search
    * **Reviews**: One review per user per book, with a live average rating
    * **Authentication**: JWT bearer tokens from `/auth/signup` and `/auth/login`

    ## Authentication

    Creating books and writing reviews require a token in the Authorization header:

    ```
    Authorization: Bearer your_token_here
    ```
    """

    # Server Settings
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False

    # JWT Settings
    secret_key: str = "your-secret-key-change-in-production"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24

    # Pagination
    default_page_size: int = 10
    max_page_size: int = 100

    # CORS Settings
    cors_origins: List[str] = ["*"]  # Configure appropriately for production
    cors_allow_credentials: bool = True
    cors_allow_methods: List[str] = ["*"]
    cors_allow_headers: List[str] = ["*"]

    model_config = {
        "env_file": ".env",
        "extra": "ignore"  # Ignore extra fields from .env
    }


# Global config instance
config = APIConfig()
