"""Main entry point for the Helix swap engine."""

import logging
import os
import sys
from pathlib import Path

import uvicorn
from dotenv import load_dotenv

from api.main import create_app
from config import EngineConfig
from core.errors import ConfigurationError


def setup_logging(level: str = "INFO") -> None:
    """Setup logging configuration.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler("helix-swap.log"),
        ],
    )


def load_config() -> EngineConfig:
    """Load configuration from HELIX_CONFIG (TOML) or the environment.

    Raises:
        ConfigurationError: If configuration is invalid
    """
    config_path = os.getenv("HELIX_CONFIG")
    if config_path:
        config = EngineConfig.from_file(Path(config_path))
    else:
        config = EngineConfig.from_env()
    config.validate()
    return config


def main() -> None:
    """Main entry point."""
    # Load environment variables
    env_path = Path(".env")
    if env_path.exists():
        load_dotenv(env_path)

    log_level = os.getenv("LOG_LEVEL", "INFO")
    setup_logging(log_level)

    logger = logging.getLogger(__name__)
    logger.info("Starting Helix swap engine...")

    try:
        config = load_config()
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    uvicorn.run(
        create_app(config),
        host=config.api_host,
        port=config.api_port,
        log_level=config.log_level.lower(),
    )


if __name__ == "__main__":
    main()
