"""Build configuration loading."""

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict

from pydantic import ValidationError
from ruamel.yaml import YAML, YAMLError

from pvelxc.exceptions import ConfigurationError
from pvelxc.models.config import BuildConfig


logger = logging.getLogger(__name__)


class ConfigLoader:
    """Loads and validates a build configuration file."""
    
    def __init__(self, config_file: Path):
        """Initialize configuration loader."""
        self.config_file = Path(config_file)
        self.yaml = YAML(typ="safe")
        
    async def load(self, **overrides: Any) -> BuildConfig:
        """Load the configuration, applying top-level overrides before validation."""
        logger.info(f"Loading configuration from {self.config_file}")
        
        if not self.config_file.exists():
            raise FileNotFoundError(f"Config not found: {self.config_file}")
            
        try:
            data = await self._read_yaml(self.config_file)
        except YAMLError as e:
            raise ConfigurationError(f"Failed to parse {self.config_file}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"Config {self.config_file} must be a YAML mapping")
        data.update({k: v for k, v in overrides.items() if v is not None})
        
        try:
            config = BuildConfig(**data)
        except ValidationError as e:
            logger.error(f"Invalid config: {e}")
            raise
            
        logger.debug(f"Loaded config for container {config.hostname}")
        return config
        
    async def _read_yaml(self, file_path: Path) -> Dict[str, Any]:
        """Read and parse YAML file in a worker thread."""
        def _read():
            return self.yaml.load(file_path.read_text())
            
        return await asyncio.to_thread(_read)


async def load_config(config_file: Path, **overrides: Any) -> BuildConfig:
    """Load a build configuration file."""
    return await ConfigLoader(config_file).load(**overrides)
