"""Process execution.

The only layer of nebulactl that starts operating system processes.
Commands are always given as argument lists, never through a shell.
"""

import shutil
import subprocess
import threading
from collections.abc import Callable
from dataclasses import dataclass

# Elevation helper prefixed to every mutating package-manager call
PRIVILEGE_HELPER = "pkexec"


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Captured output and exit status of a finished process."""

    stdout: str
    stderr: str
    returncode: int

    @property
    def success(self) -> bool:
        """True when the process exited with status 0."""
        return self.returncode == 0

    @property
    def reason(self) -> str:
        """Human-readable failure reason.

        Prefers stderr, falls back to stdout, and finally to the exit code.
        """
        if self.stderr.strip():
            return self.stderr.strip()
        if self.stdout.strip():
            return self.stdout.strip()
        return f"Exit code: {self.returncode}"


def run_command(args: list[str], *, timeout: float | None = 60.0) -> CommandResult:
    """Run a command to completion, capturing its output as text.

    A non-zero exit status is returned, not raised.

    Args:
        args: Program and arguments; no shell is involved.
        timeout: Seconds before the process is killed, None for no limit.

    Raises:
        subprocess.TimeoutExpired: If the timeout elapses.
        FileNotFoundError: If the program does not exist.
    """
    completed = subprocess.run(args, capture_output=True, text=True, check=False, timeout=timeout)
    return CommandResult(completed.stdout, completed.stderr, completed.returncode)


def run_streaming(
    args: list[str],
    *,
    on_line: Callable[[str], None] | None = None,
    timeout: float | None = None,
) -> CommandResult:
    """Execute a command while forwarding stdout line by line.

    Stdout is read incrementally and every line is handed to ``on_line``
    as soon as it arrives. Stderr is collected in full once the process
    exits.

    Args:
        args: Command and arguments to execute.
        on_line: Callback invoked with each stdout line (without newline).
        timeout: Maximum time in seconds to wait for the process to exit
            after stdout has been closed.

    Returns:
        CommandResult with the complete stdout, stderr, and returncode.

    Raises:
        subprocess.TimeoutExpired: If the process does not exit in time.
        FileNotFoundError: If command executable is not found.
    """
    lines: list[str] = []
    err_chunks: list[str] = []
    with subprocess.Popen(
        args,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        bufsize=1,
    ) as proc:
        assert proc.stdout is not None
        assert proc.stderr is not None
        stderr_pipe = proc.stderr
        # Drain stderr concurrently so a full pipe cannot stall the child
        err_reader = threading.Thread(
            target=lambda: err_chunks.append(stderr_pipe.read()),
            daemon=True,
        )
        err_reader.start()
        for raw in proc.stdout:
            line = raw.rstrip("\n")
            lines.append(line)
            if on_line is not None:
                on_line(line)
        returncode = proc.wait(timeout=timeout)
        err_reader.join()

    stderr = "".join(err_chunks)
    stdout = "\n".join(lines)
    if lines:
        stdout += "\n"
    return CommandResult(stdout=stdout, stderr=stderr, returncode=returncode)


def run_privileged(
    program: str,
    args: list[str],
    *,
    timeout: float | None = 60.0,
    on_line: Callable[[str], None] | None = None,
) -> CommandResult:
    """Execute a program through the privilege helper.

    Args:
        program: Program to run with elevated privileges.
        args: Arguments for the program.
        timeout: Maximum time in seconds to wait for the command.
        on_line: If given, stream stdout through :func:`run_streaming`.

    Returns:
        CommandResult of the elevated command.
    """
    argv = [PRIVILEGE_HELPER, program, *args]
    if on_line is not None:
        return run_streaming(argv, on_line=on_line, timeout=timeout)
    return run_command(argv, timeout=timeout)


def command_exists(name: str) -> bool:
    """Check whether a program can be found on PATH."""
    return shutil.which(name) is not None
