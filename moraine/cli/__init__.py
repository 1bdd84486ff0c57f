"""
Command-line interface for moraine.
"""

from moraine.cli.main import cli
from moraine.cli.deploy import DeploymentCLI, DeploymentError

__all__ = ["cli", "DeploymentCLI", "DeploymentError"]
