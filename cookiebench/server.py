"""Build and serve the app under test.

Runs the project's own ``build`` and ``start`` scripts with whichever package
manager its lockfile points at, then polls the server until it answers.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import socket
from dataclasses import dataclass
from pathlib import Path

from playwright.async_api import APIRequestContext, Error as PlaywrightError

from .errors import BuildError

logger = logging.getLogger(__name__)

READY_ATTEMPTS = 30
READY_INTERVAL_S = 1.0

# Checked in order; the first lockfile present wins
_LOCKFILES = (
    ("pnpm-lock.yaml", "pnpm"),
    ("yarn.lock", "yarn"),
    ("package-lock.json", "npm"),
)


@dataclass
class ServerInfo:
    url: str
    port: int
    process: asyncio.subprocess.Process | None = None


def get_package_manager(app_path: str | Path) -> str:
    """Return the package manager command for a project directory."""
    root = Path(app_path)
    for lockfile, command in _LOCKFILES:
        if (root / lockfile).exists() and shutil.which(command):
            return command
    if shutil.which("npm"):
        return "npm"
    raise BuildError("No package manager found on PATH (tried pnpm, yarn, npm)")


def _script_args(package_manager: str, script: str, *extra: str) -> list[str]:
    if package_manager == "npm":
        args = ["run", script]
        if extra:
            args += ["--", *extra]
        return args
    return [script, *extra]


def find_free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


async def _run_build(package_manager: str, cwd: Path) -> None:
    logger.info("Building app in %s with %s", cwd, package_manager)
    try:
        proc = await asyncio.create_subprocess_exec(
            package_manager, *_script_args(package_manager, "build"), cwd=str(cwd),
        )
    except OSError as e:
        raise BuildError(f"Could not start build: {e}") from e
    code = await proc.wait()
    if code != 0:
        raise BuildError(f"Build failed with exit code {code}")


async def wait_until_ready(
    url: str,
    api_request: APIRequestContext,
    attempts: int = READY_ATTEMPTS,
    interval_s: float = READY_INTERVAL_S,
) -> bool:
    """Poll ``url`` until it returns a 2xx response."""
    for attempt in range(1, attempts + 1):
        try:
            response = await api_request.get(url, timeout=interval_s * 1000 * 5)
            if response.ok:
                return True
            logger.debug("Server answered %d (attempt %d/%d)", response.status, attempt, attempts)
        except PlaywrightError as e:
            logger.debug("Server not ready (attempt %d/%d): %s", attempt, attempts, e)
        await asyncio.sleep(interval_s)
    return False


async def build_and_serve(app_path: str | Path, api_request: APIRequestContext) -> ServerInfo:
    """Build the app, start it on a free port and wait for it to answer."""
    cwd = Path(app_path)
    if not (cwd / "package.json").exists():
        raise BuildError(f"No package.json in {cwd}")

    package_manager = get_package_manager(cwd)
    await _run_build(package_manager, cwd)

    port = find_free_port()
    logger.info("Starting app on port %d", port)
    try:
        process = await asyncio.create_subprocess_exec(
            package_manager,
            *_script_args(package_manager, "start", "--port", str(port)),
            cwd=str(cwd),
            stdout=asyncio.subprocess.DEVNULL,
        )
    except OSError as e:
        raise BuildError(f"Could not start server: {e}") from e

    server = ServerInfo(url=f"http://localhost:{port}", port=port, process=process)
    if not await wait_until_ready(server.url, api_request):
        await cleanup_server(server)
        raise BuildError(f"Server failed to start on {server.url}")

    logger.info("Server is ready at %s", server.url)
    return server


async def cleanup_server(server: ServerInfo | None) -> None:
    """Terminate the server process if it is still running."""
    if server is None or server.process is None:
        return
    process = server.process
    if process.returncode is not None:
        return
    try:
        process.terminate()
        await asyncio.wait_for(process.wait(), timeout=5)
    except asyncio.TimeoutError:
        logger.warning("Server did not exit, killing pid %d", process.pid)
        process.kill()
        await process.wait()
    except ProcessLookupError:
        pass
