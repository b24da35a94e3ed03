"""
Error taxonomy for dyncluster

Every error raised by the node lifecycle driver derives from DynClusterError and
can carry the id of the container or node it concerns, so failures can be
correlated with the resource that caused them.
"""
from typing import Optional


class DynClusterError(Exception):
    """Base class for all dyncluster errors"""

    def __init__(self, message: str, resource_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.resource_id = resource_id

    def __str__(self) -> str:
        if self.resource_id:
            return f"{self.message} (resource: {self.resource_id})"
        return self.message


class ConfigurationError(DynClusterError):
    """Missing or ambiguous configuration (network addressing, images, config files)"""


class ResourceNotFoundError(DynClusterError):
    """The backing container vanished or cannot be reached"""


class ToolMissingError(DynClusterError):
    """A required tool is missing inside the container and could not be installed"""


class TransientBackendError(DynClusterError):
    """A single Docker API call failed; retrying is up to the caller"""


class ConsistencyError(DynClusterError):
    """A just-created container is not visible in a subsequent listing"""


class CancellationError(DynClusterError):
    """A wait was cancelled by the caller or ran past its timeout"""


class StateDecodeError(DynClusterError):
    """Persisted node state exists but cannot be decoded"""


class CommandExecutionError(DynClusterError):
    """A command executed inside a container exited with a non-zero status"""

    # Exit codes used by the runtime when the executable cannot be found or run
    MISSING_EXECUTABLE_CODES = (126, 127)

    def __init__(self, command, exit_code: int, output: str = "", resource_id: Optional[str] = None):
        super().__init__(f"command {' '.join(command)!r} exited with code {exit_code}", resource_id)
        self.command = list(command)
        self.exit_code = exit_code
        self.output = output

    @property
    def tool_missing(self) -> bool:
        """True when the command failed because its executable is not installed"""
        if self.exit_code in self.MISSING_EXECUTABLE_CODES:
            return True
        lowered = self.output.lower()
        return "executable file not found" in lowered or "command not found" in lowered


class ClusterControlError(DynClusterError):
    """A call against a node's management REST API failed"""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = "",
                 resource_id: Optional[str] = None):
        super().__init__(message, resource_id)
        self.status_code = status_code
        self.body = body
