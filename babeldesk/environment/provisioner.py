"""Resolution of the interpreter, tool manager and translation executable.

``LocalEnvironmentProvisioner`` only detects what is already installed:
a Python 3.10+ interpreter, the ``uv`` tool manager and the directory
``uv`` installs tool executables into. The result is cached until
``reset()``.
"""

import asyncio
import logging
import os
import re
import sys
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel

from babeldesk.errors import ProvisioningError

logger = logging.getLogger(__name__)

MIN_PYTHON = (3, 10)
_PYTHON_VERSION = re.compile(r"Python\s+(\d+)\.(\d+)\.(\d+)", re.I)


class EnvironmentSummary(BaseModel):
    interpreter_path: str
    tool_manager_path: str
    executable_path: str
    tool_bin_dir: str = ""


class EnvironmentCheckStatus(BaseModel):
    stage: str  # "python" | "uv" | "babeldoc" | "uv-bin-dir"
    status: str  # "running" | "success" | "error"
    message: Optional[str] = None


StatusCallback = Callable[[EnvironmentCheckStatus], None]


class EnvironmentProvisioner(ABC):
    """Contract the translation queue relies on."""

    @abstractmethod
    async def ensure(self) -> EnvironmentSummary:
        """Return the resolved environment, raising ProvisioningError on failure."""
        ...

    @abstractmethod
    def reset(self) -> None:
        """Forget any cached result."""
        ...


class StaticEnvironmentProvisioner(EnvironmentProvisioner):
    """Fixed environment, e.g. an explicitly configured executable."""

    def __init__(self, summary: EnvironmentSummary):
        self._summary = summary

    @classmethod
    def for_executable(cls, executable_path: str) -> "StaticEnvironmentProvisioner":
        return cls(
            EnvironmentSummary(
                interpreter_path=sys.executable,
                tool_manager_path="",
                executable_path=executable_path,
                tool_bin_dir=os.path.dirname(executable_path),
            )
        )

    async def ensure(self) -> EnvironmentSummary:
        return self._summary

    def reset(self) -> None:
        pass


def extended_env() -> Dict[str, str]:
    """Process environment with the usual user-level tool locations on PATH."""
    home = str(Path.home())
    extra = [
        "/usr/local/bin",
        "/opt/homebrew/bin",
        "/usr/bin",
        os.path.join(home, ".pyenv", "shims"),
        os.path.join(home, ".local", "bin"),
        os.path.join(home, ".cargo", "bin"),
    ]
    env = dict(os.environ)
    env["PATH"] = os.pathsep.join(extra + [env.get("PATH", "")])
    return env


async def run_command(command: str, args: List[str], timeout: float = 60) -> Tuple[int, str]:
    """Run a short command and return ``(exit code, combined output)``."""
    proc = await asyncio.create_subprocess_exec(
        command,
        *args,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.STDOUT,
        env=extended_env(),
    )
    try:
        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        raise
    return proc.returncode, stdout.decode("utf-8", errors="replace").strip()


class LocalEnvironmentProvisioner(EnvironmentProvisioner):
    def __init__(self, on_status: Optional[StatusCallback] = None):
        self._on_status = on_status
        self._cached: Optional[EnvironmentSummary] = None
        self._lock = asyncio.Lock()

    @property
    def cached(self) -> Optional[EnvironmentSummary]:
        return self._cached

    def reset(self) -> None:
        self._cached = None

    async def ensure(self) -> EnvironmentSummary:
        async with self._lock:
            if self._cached is None:
                self._cached = await self._resolve()
            return self._cached

    def _notify(self, stage: str, status: str, message: Optional[str] = None) -> None:
        if self._on_status is not None:
            self._on_status(EnvironmentCheckStatus(stage=stage, status=status, message=message))

    async def _stage(self, stage: str, start_message: str, step):
        self._notify(stage, "running", start_message)
        try:
            result = await step()
        except ProvisioningError as exc:
            self._notify(stage, "error", str(exc))
            raise
        self._notify(stage, "success", str(result) if result else None)
        return result

    async def _resolve(self) -> EnvironmentSummary:
        python = await self._stage("python", "Detecting Python runtime", self._detect_python)
        uv = await self._stage("uv", "Checking for uv", self._detect_uv)
        await self._stage("babeldoc", "Checking for BabelDOC", lambda: self._check_tool(uv))
        bin_dir = await self._stage(
            "uv-bin-dir", "Locating the BabelDOC executable", lambda: self._tool_bin_dir(uv)
        )
        name = "babeldoc.exe" if sys.platform == "win32" else "babeldoc"
        executable = os.path.join(bin_dir, name) if bin_dir else "babeldoc"
        summary = EnvironmentSummary(
            interpreter_path=python,
            tool_manager_path=uv,
            executable_path=executable,
            tool_bin_dir=bin_dir,
        )
        logger.info("resolved environment: %s", summary.model_dump())
        return summary

    async def _detect_python(self) -> str:
        candidates = ["python", "py"] if sys.platform == "win32" else ["python3", "python"]
        for candidate in candidates:
            try:
                code, output = await run_command(candidate, ["--version"])
            except (OSError, asyncio.TimeoutError) as exc:
                logger.warning("Python candidate %s not usable: %s", candidate, exc)
                continue
            match = _PYTHON_VERSION.search(output)
            if code != 0 or not match:
                continue
            version = (int(match.group(1)), int(match.group(2)))
            if version >= MIN_PYTHON:
                logger.info("Using python: %s (%s)", candidate, output)
                return candidate
        raise ProvisioningError("No compatible Python 3.10+ runtime was found on PATH")

    async def _detect_uv(self) -> str:
        try:
            code, output = await run_command("uv", ["--version"])
        except (OSError, asyncio.TimeoutError) as exc:
            raise ProvisioningError(
                f"uv is not installed ({exc}). Install it with: "
                "curl -LsSf https://astral.sh/uv/install.sh | sh"
            ) from exc
        if code != 0:
            raise ProvisioningError(f"uv --version failed: {output}")
        logger.info("uv available: %s", output)
        return "uv"

    async def _check_tool(self, uv: str) -> str:
        try:
            code, output = await run_command(uv, ["tool", "list"])
        except (OSError, asyncio.TimeoutError) as exc:
            raise ProvisioningError(f"Could not list uv tools: {exc}") from exc
        if code != 0 or "babeldoc" not in output.lower():
            raise ProvisioningError(
                "BabelDOC is not installed. Install it with: uv tool install BabelDOC"
            )
        return "BabelDOC is ready"

    async def _tool_bin_dir(self, uv: str) -> str:
        try:
            code, output = await run_command(uv, ["tool", "dir", "--bin"])
        except (OSError, asyncio.TimeoutError) as exc:
            raise ProvisioningError(f"Could not locate the uv tool directory: {exc}") from exc
        if code != 0:
            raise ProvisioningError(f"uv tool dir --bin failed: {output}")
        return output.strip()
