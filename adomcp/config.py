"""
Configuration management for adomcp.

This module handles environment variables, Azure DevOps API configuration,
logging setup and the interactive ``.env`` creation used by ``adomcp --setup``.
"""

import base64
import logging
import os
import shutil
from typing import Dict, Optional

from dotenv import load_dotenv
from rich.console import Console
from rich.prompt import Prompt

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logger = logging.getLogger(__name__)
# stdout carries the MCP protocol, so everything human-facing goes to stderr
console = Console(stderr=True)


class Config:
    """Configuration class for the adomcp server."""

    def __init__(self, interactive: bool = False):
        """
        Initialize configuration by loading environment variables.

        Args:
            interactive: Prompt for missing settings and write a ``.env`` file.
                Only safe from a terminal, never while serving over stdio.
        """
        load_dotenv()
        if interactive:
            self._ensure_env_setup()

    @property
    def organization(self) -> str:
        """Get the Azure DevOps organization name."""
        return os.getenv("AZURE_DEVOPS_ORG", "")

    @property
    def personal_access_token(self) -> str:
        """Get the Azure DevOps personal access token."""
        return os.getenv("AZURE_DEVOPS_PAT", "")

    @property
    def bearer_token(self) -> str:
        """Get a pre-acquired bearer token, used when no PAT is configured."""
        return os.getenv("AZURE_DEVOPS_TOKEN", "")

    @property
    def base_url(self) -> str:
        """Get the Azure DevOps service root."""
        return os.getenv("AZURE_DEVOPS_BASE_URL", "https://dev.azure.com").rstrip("/")

    @property
    def organization_url(self) -> str:
        """Get the organization URL, e.g. https://dev.azure.com/contoso."""
        return f"{self.base_url}/{self.organization}"

    @property
    def api_version(self) -> str:
        return os.getenv("AZURE_DEVOPS_API_VERSION", "7.1")

    @property
    def items_api_version(self) -> str:
        """API version used by the fallback item retrieval path."""
        return os.getenv("AZURE_DEVOPS_ITEMS_API_VERSION", "7.2-preview.1")

    @property
    def api_timeout(self) -> int:
        """Get API timeout in seconds, applied to every Azure DevOps call."""
        return int(os.getenv("API_TIMEOUT", "30"))

    @property
    def log_level(self) -> str:
        """Get log level from environment or use default."""
        return os.getenv("LOG_LEVEL", "INFO").upper()

    @property
    def log_file(self) -> str:
        return os.getenv("LOG_FILE", "")

    @property
    def feature_switch_root(self) -> str:
        """Folder holding feature-switch JSON files inside the repository."""
        return os.getenv("FEATURE_SWITCH_ROOT", "Features/Configuration/Features").strip("/")

    @property
    def feature_repository_id(self) -> str:
        """Repository id suggested to the agent by the prompt templates."""
        return os.getenv("FEATURE_REPOSITORY_ID", "")

    def _ensure_env_setup(self) -> None:
        """Ensure environment variables are set up, prompt user if missing."""
        if not os.path.exists(".env"):
            if os.path.exists(".env.example"):
                console.print("No .env file found, but .env.example exists.", style="yellow")
                if (
                    Prompt.ask(
                        "Would you like to copy .env.example to .env?",
                        choices=["y", "n"],
                        default="y",
                        console=console,
                    )
                    == "y"
                ):
                    shutil.copy(".env.example", ".env")
                    console.print("Created .env file from .env.example", style="green")
                    console.print(
                        "Please edit .env with your organization and token and run again.",
                        style="yellow",
                    )
                    return
            else:
                console.print("No .env file found and no .env.example to copy from.", style="yellow")
                if (
                    Prompt.ask(
                        "Would you like to create a .env file now?",
                        choices=["y", "n"],
                        default="y",
                        console=console,
                    )
                    == "y"
                ):
                    self._create_env_file()
                else:
                    return

        load_dotenv(override=True)
        self.validate()

    def _create_env_file(self) -> None:
        """Create .env file by prompting user for values."""
        console.print("Creating .env file...", style="blue")

        organization = Prompt.ask("Enter your Azure DevOps organization name", console=console)
        pat = Prompt.ask(
            "Enter your Azure DevOps personal access token (Code: Read & Write)",
            password=True,
            console=console,
        )

        configure_optional = Prompt.ask(
            "\nWould you like to configure optional settings?",
            choices=["y", "n"],
            default="n",
            console=console,
        )

        log_level = self.log_level
        repository_id = self.feature_repository_id

        if configure_optional == "y":
            log_level = Prompt.ask(
                "Log level",
                choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                default=self.log_level,
                console=console,
            )
            repository_id = Prompt.ask(
                "Feature-switch repository id", default=repository_id, console=console
            )

        env_content = f"""# adomcp Environment Configuration
# Generated on setup

# Required: Azure DevOps organization name
AZURE_DEVOPS_ORG={organization}

# Required (or AZURE_DEVOPS_TOKEN): Azure DevOps personal access token
AZURE_DEVOPS_PAT={pat}

# Optional: Azure DevOps service root
AZURE_DEVOPS_BASE_URL={self.base_url}

# Optional: REST api-version
AZURE_DEVOPS_API_VERSION={self.api_version}

# Optional: api-version of the fallback item retrieval path
AZURE_DEVOPS_ITEMS_API_VERSION={self.items_api_version}

# Optional: API timeout in seconds
API_TIMEOUT={self.api_timeout}

# Optional: Log level
LOG_LEVEL={log_level}

# Optional: Folder holding feature-switch files
FEATURE_SWITCH_ROOT={self.feature_switch_root}

# Optional: Repository id suggested by prompts
FEATURE_REPOSITORY_ID={repository_id}
"""

        with open(".env", "w") as f:
            f.write(env_content)

        console.print(".env file created successfully!", style="green")

    def validate(self) -> None:
        """Validate that all required environment variables are set."""
        missing_vars = []
        if not self.organization:
            missing_vars.append("AZURE_DEVOPS_ORG")
        if not (self.personal_access_token or self.bearer_token):
            missing_vars.append("AZURE_DEVOPS_PAT (or AZURE_DEVOPS_TOKEN)")

        if missing_vars:
            logger.error(f"Missing required environment variables: {', '.join(missing_vars)}")
            raise ValueError(f"Missing required environment variables: {', '.join(missing_vars)}")

        logger.info("Configuration validated successfully")

    def get_ado_headers(self) -> Dict[str, str]:
        """Get headers for Azure DevOps API requests."""
        headers = {"Accept": "application/json", "User-Agent": "adomcp"}
        if self.personal_access_token:
            encoded = base64.b64encode(f":{self.personal_access_token}".encode("utf-8")).decode("ascii")
            headers["Authorization"] = f"Basic {encoded}"
        elif self.bearer_token:
            headers["Authorization"] = f"Bearer {self.bearer_token}"
        return headers

    def setup_logging(self, level: Optional[str] = None) -> None:
        """Setup logging configuration."""
        level_name = (level or self.log_level).upper()
        numeric_level = getattr(logging, level_name, None)
        if not isinstance(numeric_level, int):
            raise ValueError(f"Invalid log level: {level_name}")

        handlers = [logging.StreamHandler()]
        if self.log_file:
            handlers.append(logging.FileHandler(self.log_file))

        logging.basicConfig(level=numeric_level, format=LOG_FORMAT, handlers=handlers, force=True)
        logger.info(f"Logging level set to {level_name}")


# Global configuration instance (lazy initialization)
_config_instance = None


def get_config() -> Config:
    """Get the global configuration instance (lazy initialization)."""
    global _config_instance
    if _config_instance is None:
        _config_instance = Config()
    return _config_instance


class ConfigProxy:
    """Proxy object that provides lazy access to config properties."""

    def __getattr__(self, name):
        return getattr(get_config(), name)


config = ConfigProxy()
