from pathlib import Path
from typing import Optional, Tuple, Type
from pydantic import Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict
import logging
import tomllib

DEFAULT_CONFIG_PATH = "configs/filemanager.toml"


class Settings(BaseSettings):
    """File manager settings. Values come from the TOML config file, and can be
    overridden by FILEMANAGER_* environment variables (or a .env file)."""

    model_config = SettingsConfigDict(env_prefix="FILEMANAGER_", env_file=".env", extra="ignore")

    bind_addr: str = ":8080"
    log_level: str = "debug"
    # S3
    endpoint: str = "http://localhost:9000"
    access_key: Optional[str] = None
    secret_key: Optional[str] = None
    region: str = "us-east-1"
    bucket: str = "static"
    with_checksums: bool = False
    timeout: float = Field(default=10.0, gt=0)
    # File system view
    root_prefix: str = "backend"
    tree_order: str = Field(default="desc", pattern="^(asc|desc)$")
    tree_strict: bool = False
    empty_listing: str = Field(default="error", pattern="^(error|empty)$")
    # HTTP
    cors_origin: str = "http://localhost:3000"
    max_upload_size: int = Field(default=32 << 20, gt=0)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        # environment wins over the config file, given as init values
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    @property
    def host(self) -> str:
        host, _, _ = self.bind_addr.rpartition(":")
        return host or "0.0.0.0"

    @property
    def port(self) -> int:
        _, _, port = self.bind_addr.rpartition(":")
        return int(port) if port else 8080


def load_settings(config_path: Optional[str] = None) -> Settings:
    """Load the settings from a TOML file, if any.

    Args:
        config_path (str, optional): Path of the TOML config file. Defaults to None.

    Raises:
        FileNotFoundError: When an explicit config file does not exist.

    Returns:
        Settings: The settings
    """
    values = {}
    if config_path:
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file {config_path} does not exist")
        with open(path, "rb") as f:
            values = tomllib.load(f)
        logging.debug(f"Config loaded from {config_path}")
    return Settings(**values)
