"""
Deployment commands for the to-do stack.

Thin wrappers around the Pulumi CLI, run in the Pulumi project directory
(infra/ by default).
"""

import json
import subprocess
from pathlib import Path
from typing import Any, Sequence

import click
import structlog

logger = structlog.get_logger()


class DeploymentError(Exception):
    """Raised when a Pulumi command fails."""
    pass


class DeploymentCLI:
    """
    Runs Pulumi preview/up/destroy/stack output.

    Example:
        cli = DeploymentCLI("infra")
        cli.pulumi_preview(stack="dev")
        outputs = cli.pulumi_stack_output(stack="dev")
    """

    def __init__(self, project_dir: str | Path = "infra", verbose: bool = True):
        """
        Args:
            project_dir: Directory containing Pulumi.yaml
            verbose: Echo command output
        """
        self.project_dir = Path(project_dir)
        self.verbose = verbose

    def pulumi_preview(self, stack: str | None = None) -> subprocess.CompletedProcess:
        """Preview changes; side effects of the program are skipped."""
        return self._run_pulumi_command(["preview"], stack, description="Previewing infrastructure changes")

    def pulumi_up(self, stack: str | None = None, yes: bool = False) -> subprocess.CompletedProcess:
        """Deploy the stack, running side effects once resources exist."""
        extra_args = ["--yes"] if yes else []
        return self._run_pulumi_command(["up", *extra_args], stack, description="Deploying infrastructure")

    def pulumi_destroy(self, stack: str | None = None, yes: bool = False) -> subprocess.CompletedProcess:
        extra_args = ["--yes"] if yes else []
        return self._run_pulumi_command(["destroy", *extra_args], stack, description="Destroying infrastructure")

    def pulumi_stack_output(self, stack: str | None = None, show_secrets: bool = False) -> dict[str, Any]:
        """
        Get stack outputs as a dictionary.

        Raises:
            DeploymentError: If the command fails or prints invalid JSON
        """
        args = ["stack", "output", "--json"]
        if show_secrets:
            args.append("--show-secrets")
        result = self._run_pulumi_command(args, stack, description="Getting stack outputs", capture=True)

        try:
            return json.loads(result.stdout or "{}")
        except json.JSONDecodeError as e:
            raise DeploymentError(f"Failed to parse stack outputs: {e}") from e

    def _run_pulumi_command(
        self,
        args: Sequence[str],
        stack: str | None = None,
        description: str | None = None,
        capture: bool = False,
    ) -> subprocess.CompletedProcess:
        """
        Run a Pulumi CLI command in the project directory.

        Without capture the command inherits the terminal, so pulumi can
        stream progress and prompt for confirmation.

        Raises:
            DeploymentError: If the directory is missing or the command fails
        """
        if not self.project_dir.exists():
            raise DeploymentError(f"Pulumi project directory not found: {self.project_dir}")

        cmd = ["pulumi", *args]
        if stack:
            cmd.extend(["--stack", stack])

        if self.verbose and description:
            click.echo(f"{description}...")
        logger.info("pulumi_command_started", command=" ".join(cmd), directory=str(self.project_dir))

        try:
            result = subprocess.run(
                cmd,
                cwd=self.project_dir,
                check=True,
                capture_output=capture,
                text=True,
            )
        except FileNotFoundError as e:
            raise DeploymentError("pulumi CLI not found on PATH") from e
        except subprocess.CalledProcessError as e:
            error_msg = f"Pulumi command failed: {' '.join(cmd)}"
            if e.stderr:
                error_msg += f"\n{e.stderr}"
            raise DeploymentError(error_msg) from e

        logger.info("pulumi_command_completed", command=" ".join(cmd))
        return result
