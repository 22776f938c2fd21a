# /flowpilot/config/settings.py

from typing import List, Literal, Union
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


ValidationMode = Literal["STRICT", "LENIENT"]


class Settings(BaseSettings):
    # App Metadata
    app_name: str = "FlowPilot Workflow Copilot"
    app_version: str = "1.0.0"
    api_version: str = "v1"
    environment: str = "production"

    # AI-authored workflows are validated leniently: step kinds missing from the
    # static registry may still be legitimate platform capabilities.
    ai_validation_mode: ValidationMode = "LENIENT"

    # Platform constraints consulted by the workflow validator
    max_parallel_paths: int = 3
    max_decision_outcomes: int = 3
    max_branch_nesting_depth: int = 2
    max_conditions_per_path: int = 10

    # Security
    api_key: str | None = None

    # Deployment
    workers: int = 4
    rate_limit_per_minute: int = 100

    # Union with str lets a plain comma-separated env value through to the validator
    cors_allowed_origins: Union[List[str], str] = Field(
        default=[
            "http://localhost:3000",
            "http://localhost:5173",
        ]
    )

    # ---------------- Validators ---------------- #

    @field_validator("cors_allowed_origins", mode="before")
    @classmethod
    def parse_cors_allowed_origins(cls, v):
        """
        Handle both string (comma-separated) and list formats for cors_allowed_origins.
        """
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    @field_validator("max_parallel_paths", "max_decision_outcomes", "max_branch_nesting_depth")
    @classmethod
    def limits_must_be_positive(cls, v):
        if v < 1:
            raise ValueError("Workflow structure limits must be at least 1")
        return v

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
