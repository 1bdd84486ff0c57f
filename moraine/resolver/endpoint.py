"""
EndpointResolver: look up resource properties through the Azure CLI.

Some properties (e.g. the public static website endpoint of a storage
account) are not exposed by the provisioning library. The resolver queries
the control plane with an external command and uses the first meaningful
line of its output.

Relies on an already authenticated CLI session (`az login`).
"""

import subprocess
import tempfile
from typing import Any, Callable, Iterable, Sequence

import structlog

from moraine.core.context import ExecutionGate

logger = structlog.get_logger()

DEFAULT_COMMAND: tuple[str, ...] = (
    "az", "storage", "account", "show",
    "--name", "{name}",
    "--resource-group", "{resource_group}",
    "--query", "primaryEndpoints.web",
    "--output", "json",
)

QUOTE_CHARACTERS = "\"'"


class EndpointResolutionError(Exception):
    """Raised when the control-plane query yields no usable value."""

    def __init__(self, command: Sequence[str], returncode: int | None, stderr: str):
        self.command = list(command)
        self.returncode = returncode
        self.stderr = stderr
        message = f"Command '{' '.join(self.command)}' produced no output (exit status {returncode})"
        if stderr.strip():
            message += f": {stderr.strip()}"
        super().__init__(message)


def first_meaningful_line(lines: Iterable[str]) -> str | None:
    """
    Return the first non-blank line, stripped of whitespace and enclosing quotes.

    Example:
        first_meaningful_line(["", '"https://todo.z6.web.core.windows.net/"'])
        # "https://todo.z6.web.core.windows.net/"
    """
    for raw in lines:
        line = raw.strip()
        if line:
            return line.strip(QUOTE_CHARACTERS)
    return None


class EndpointResolver:
    """
    Resolves a property by running a blocking external query.

    Example:
        resolver = EndpointResolver(gate)
        endpoint = resolver.resolve("frontendstorage1a2b", resource_group="rg-todo")
    """

    def __init__(
        self,
        gate: ExecutionGate,
        command: Sequence[str] = DEFAULT_COMMAND,
        popen: Callable[..., Any] = subprocess.Popen,
    ):
        """
        Args:
            gate: Execution gate; nothing is spawned in preview
            command: Command template; '{name}' and keyword placeholders are filled per call
            popen: Process factory with the subprocess.Popen signature
        """
        self.gate = gate
        self.command = tuple(command)
        self.popen = popen

    def build_command(self, name: str, **params: str) -> list[str]:
        try:
            return [part.format(name=name, **params) for part in self.command]
        except KeyError as e:
            raise ValueError(f"Missing parameter {e} for command template") from e

    def resolve(self, name: str, **params: str) -> str | None:
        """
        Run the query for a resource.

        Returns:
            The first meaningful output line, or None in preview

        Raises:
            EndpointResolutionError: If the command cannot run or prints nothing usable
        """
        return self.gate.run(f"resolve-endpoint:{name}", self._query, self.build_command(name, **params))

    def _query(self, command: list[str]) -> str:
        logger.info("endpoint_query_started", command=" ".join(command))

        # An undrained stderr pipe blocks the child once full; spool it to a file.
        with tempfile.TemporaryFile(mode="w+") as errors:
            try:
                process = self.popen(
                    command,
                    stdout=subprocess.PIPE,
                    stderr=errors,
                    text=True,
                )
            except OSError as e:
                raise EndpointResolutionError(command, None, str(e)) from e

            with process:
                line = first_meaningful_line(process.stdout)
                if line is not None:
                    if process.poll() is None:
                        process.terminate()
                    logger.info("endpoint_resolved", command=" ".join(command), value=line)
                    return line

                returncode = process.wait()

            errors.seek(0)
            stderr = errors.read()

        logger.error("endpoint_query_failed", command=" ".join(command), returncode=returncode)
        raise EndpointResolutionError(command, returncode, stderr)
