"""
Settings read from ENVPROV_* environment variables and an optional .env file.
"""
import os
from typing import Dict, Literal, Mapping, Optional

from dotenv import dotenv_values
from pydantic import BaseModel, ValidationError, field_validator

from ..errors import ConfigError

PREFIX = "ENVPROV_"


class Settings(BaseModel):
    """
    Runtime settings. Variables in the real environment override the .env file.
    """
    engine: Literal["docker", "local"] = "docker"
    docker_bin: str = "docker"
    cache_dir: str = "~/.envprov/cache"
    log_level: str = "INFO"
    resolve_base: bool = False

    @field_validator("engine", mode="before")
    @classmethod
    def _lower_engine(cls, value):
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("log_level", mode="before")
    @classmethod
    def _known_level(cls, value):
        value = str(value).strip().upper()
        if value not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level {value}")
        return value

    @classmethod
    def load(cls,
             env_file: Optional[str] = ".env",
             environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Builds settings from a .env file and the process environment.

        :param env_file: Path of the .env file, skipped if missing or None.
        :param environ: Environment to read instead of os.environ.
        :return: The settings.
        :raises ConfigError: A variable has an invalid value.
        """
        values: Dict[str, Optional[str]] = {}
        if env_file and os.path.exists(env_file):
            values.update(dotenv_values(env_file))
        values.update(os.environ if environ is None else environ)

        fields = {}
        for key, value in values.items():
            if key.startswith(PREFIX) and value is not None:
                name = key[len(PREFIX):].lower()
                if name in cls.model_fields:
                    fields[name] = value

        try:
            return cls(**fields)
        except ValidationError as e:
            raise ConfigError(f"Invalid settings: {e}") from e
