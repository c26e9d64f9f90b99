"""Subprocess runner for project commands: allowlist, timeout, scrubbed env."""

import logging
import os
import subprocess

from config.defaults import DEFAULTS

logger = logging.getLogger(__name__)

# Never handed to the project's own code (its tests run in the child).
SCRUBBED_ENV_VARS = ("ANTHROPIC_API_KEY",)


def _child_env():
    env = dict(os.environ)
    for name in SCRUBBED_ENV_VARS:
        env.pop(name, None)
    return env


def run_in_sandbox(command, cwd, timeout=None, allowed=None):
    """Run a command in the project directory.

    Args:
        command: Command as a list of strings, e.g. ["python3", "-m", "pytest"]
        cwd: Project directory (must exist)
        timeout: Seconds before killing the process (default from config)
        allowed: Executable allowlist (default from config)

    Returns:
        (stdout, stderr, returncode). A timeout or missing executable is
        reported as returncode -1 with the reason in stderr.

    Raises:
        ValueError: If command is not in the allowlist or cwd is invalid.
    """
    if timeout is None:
        timeout = DEFAULTS["sandbox_timeout"]
    if allowed is None:
        allowed = DEFAULTS["allowed_commands"]

    if not command or not isinstance(command, list):
        raise ValueError("Command must be a non-empty list of strings")

    executable = command[0]
    if executable not in allowed:
        raise ValueError(f"Command '{executable}' not in allowlist: {allowed}")

    cwd = os.path.realpath(cwd)
    if not os.path.isdir(cwd):
        raise ValueError(f"Working directory does not exist: {cwd}")

    logger.debug("sandbox: %s (cwd=%s, timeout=%ss)", " ".join(command), cwd, timeout)
    try:
        result = subprocess.run(
            command,
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout,
            env=_child_env(),
        )
        return result.stdout, result.stderr, result.returncode
    except subprocess.TimeoutExpired:
        logger.warning("sandbox: %s timed out after %ss", executable, timeout)
        return "", f"Command timed out after {timeout}s", -1
    except FileNotFoundError:
        return "", f"Command not found: {executable}", -1
