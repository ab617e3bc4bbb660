"""
adomcp - Azure DevOps MCP server.

This package serves Azure DevOps repository, pull request and feature-switch
tools to AI agents over the Model Context Protocol.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("adomcp")
except PackageNotFoundError:
    # Running from a source checkout
    __version__ = "0.0.0"
__description__ = "Azure DevOps MCP server for repositories and feature switches"

# Main modules
from . import config
from . import ado_api
from . import tools

__all__ = ["config", "ado_api", "tools"]
