"""Configuration management."""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from jinja2 import TemplateSyntaxError
from pydantic import ValidationError
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from cloudstamp.engine.scripts import BUILTIN_SCRIPTS, SCRIPT_DESCRIPTIONS
from cloudstamp.models.config import StampConfig
from cloudstamp.utils.templates import check_template


logger = logging.getLogger(__name__)

CONFIG_DIR_ENV = "CLOUDSTAMP_CONFIG_DIR"
DEFAULT_CONFIG_DIR = "./configs"


def default_config_dir() -> Path:
    """Config directory from the environment, else ./configs."""
    return Path(os.environ.get(CONFIG_DIR_ENV, DEFAULT_CONFIG_DIR))


class ConfigManager:
    """Loads the main configuration and first-boot script library."""

    def __init__(self, config_dir: Optional[Path] = None):
        """Initialize configuration manager."""
        self.config_dir = Path(config_dir) if config_dir else default_config_dir()
        self.yaml = YAML()
        self.yaml.preserve_quotes = True
        self.config: Optional[StampConfig] = None
        self.scripts: Dict[str, str] = dict(BUILTIN_SCRIPTS)
        self.script_descriptions: Dict[str, str] = dict(SCRIPT_DESCRIPTIONS)

    async def load(self) -> StampConfig:
        """Load all configuration files."""
        logger.debug(f"Loading configuration from {self.config_dir}")
        await self._load_main_config()
        await self._load_scripts()
        return self.config

    async def _load_main_config(self):
        """Load main configuration file, falling back to defaults."""
        config_file = self.config_dir / "config.yaml"
        if not config_file.exists():
            logger.debug(f"No config file at {config_file}, using defaults")
            self.config = StampConfig()
            return

        try:
            data = await self._read_yaml(config_file)
            self.config = StampConfig(**(data or {}))
            logger.debug(f"Loaded main config: {config_file}")
        except ValidationError as e:
            logger.error(f"Invalid main config: {e}")
            raise

    async def _load_scripts(self):
        """Load extra first-boot scripts, overriding built-ins by name."""
        scripts_dir = self.config_dir / "scripts"
        if not scripts_dir.exists():
            return

        for yaml_file in sorted(scripts_dir.glob("*.yaml")):
            try:
                data = await self._read_yaml(yaml_file) or {}
                for name, entry in data.items():
                    if isinstance(entry, str):
                        script, description = entry, name
                    else:
                        script, description = str(entry["script"]), str(entry.get("description", name))

                    try:
                        check_template(script)
                    except TemplateSyntaxError as e:
                        logger.error(
                            f"Skipping script {name} in {yaml_file}: {e} "
                            "(wrap literal shell text in {% raw %} ... {% endraw %})"
                        )
                        continue

                    self.scripts[name] = script
                    if isinstance(entry, str):
                        self.script_descriptions.setdefault(name, description)
                    else:
                        self.script_descriptions[name] = description
                logger.debug(f"Loaded scripts from {yaml_file}")
            except (OSError, YAMLError, KeyError, TypeError, AttributeError) as e:
                logger.error(f"Error loading {yaml_file}: {e}")

    async def _read_yaml(self, file_path: Path) -> Dict[str, Any]:
        """Read and parse YAML file."""
        return self.yaml.load(file_path.read_text())
