"""Configuration management for Archifigure.

This module provides centralized configuration management using Pydantic Settings.
Configuration is loaded from environment variables without a prefix so the
conventional provider variable names work unchanged.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (case-insensitive)
2. .env file in the project root
3. Default values defined in ArchifigureConfig

Example .env file:
    REPLICATE_API_TOKEN=r8_...
    IMGBB_API_KEY=...
    SUPABASE_URL=https://xyz.supabase.co
    SUPABASE_ANON_KEY=...

Global Configuration Instance
------------------------------
A global `config` instance is created automatically at module import time.
Secrets default to empty strings so the application can start without them;
the clients that need a secret fail on first use instead.

Usage Example
-------------
    from archifigure.core.config import config

    print(config.replicate_deployment)
    print(config.server_port)
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ArchifigureConfig(BaseSettings):
    """Main configuration for Archifigure.

    Attributes
    ----------
    Secrets:
        replicate_api_token : str
            Bearer token for the Replicate API
        imgbb_api_key : str
            API key for imgbb image hosting
        supabase_url : str
            Supabase project URL
        supabase_anon_key : str
            Supabase anonymous (public) key

    Providers:
        replicate_base_url : str
            Base URL of the Replicate HTTP API
        replicate_deployment : str
            Deployment whose predictions are listed by ``GET /api/prediction``
        image_model : str
            ``owner/name`` of the text-to-image model
        imgbb_upload_url : str
            imgbb upload endpoint
        request_timeout : float
            Timeout in seconds for outbound provider calls

    Persistence:
        autosave_project_name : str
            Project that receives auto-saved completed predictions

    Server:
        server_host : str
            Bind address for uvicorn
        server_port : int
            Port for uvicorn (1024-65535)
        log_level : Literal["DEBUG", "INFO", "WARNING", "ERROR"]
            Root log level applied by the CLI entry point
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Secrets
    replicate_api_token: str = Field(default="", description="Replicate API token")
    imgbb_api_key: str = Field(default="", description="imgbb API key")
    supabase_url: str = Field(default="", description="Supabase project URL")
    supabase_anon_key: str = Field(default="", description="Supabase anonymous key")

    # Providers
    replicate_base_url: str = Field(
        default="https://api.replicate.com",
        description="Base URL of the Replicate HTTP API",
    )
    replicate_deployment: str = Field(
        default="cygnus-holding/hunyuan3d-2",
        description="Deployment polled for 3D mesh predictions",
    )
    image_model: str = Field(
        default="google/imagen-3",
        description="Text-to-image model used by /api/generate-image",
    )
    imgbb_upload_url: str = Field(
        default="https://api.imgbb.com/1/upload",
        description="imgbb upload endpoint",
    )
    request_timeout: float = Field(
        default=60.0,
        description="Timeout in seconds for outbound provider calls",
        gt=0,
    )

    # Persistence
    autosave_project_name: str = Field(
        default="Auto-saved",
        description="Project receiving auto-saved completed predictions",
    )

    # Server
    server_host: str = Field(
        default="0.0.0.0",
        description="Server bind address (0.0.0.0 for local network)",
    )
    server_port: int = Field(
        default=5173,
        description="Server port",
        ge=1024,
        le=65535,
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Root log level",
    )


# Global configuration instance
config = ArchifigureConfig()
