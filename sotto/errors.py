"""Error taxonomy for the transcription pipeline."""


class SottoError(Exception):
    """Base exception for pipeline failures."""

    pass


class ToolMissingError(SottoError):
    """Required binary not found in PATH."""

    def __init__(self, tool: str, install_hint: str | None = None):
        self.tool = tool
        self.install_hint = install_hint
        message = f"{tool} is not installed."
        if install_hint:
            message += f" Install it with: {install_hint}"
        super().__init__(message)


class ResourceMissingError(SottoError):
    """Expected model or input file is absent."""

    def __init__(self, path, hint: str | None = None):
        self.path = path
        message = f"Whisper model not found at {path}."
        if hint:
            message += f" {hint}"
        super().__init__(message)


class SpawnError(SottoError):
    """OS-level failure to start a process."""

    pass


class ProcessFailureError(SottoError):
    """Process exited with an unexpected nonzero code."""

    def __init__(self, command: str, returncode: int | None, stderr: str = ""):
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        message = f"{command} exited with code {returncode}"
        if stderr:
            message += f": {stderr}"
        super().__init__(message)


class ProcessError(SottoError):
    """Runtime pipe or OS error reported while the process was running."""

    def __init__(self, command: str, cause: BaseException):
        self.command = command
        self.cause = cause
        super().__init__(f"{command} error: {cause}")
