"""Wrapper for tshark command-line tool."""

from __future__ import annotations

import logging
import shutil
import subprocess

from tchantrace.utils.errors import TsharkExecutionError, TsharkNotFoundError

logger = logging.getLogger(__name__)


class TsharkWrapper:
    """Wrapper for executing tshark commands."""

    def __init__(self) -> None:
        """Initialize TsharkWrapper and verify tshark is available."""
        self.tshark_path = self._find_tshark()
        self.version = self._get_version()

    def _find_tshark(self) -> str:
        """
        Find tshark executable in system PATH.

        Returns:
            Path to tshark executable

        Raises:
            TsharkNotFoundError: If tshark is not found
        """
        tshark_path = shutil.which("tshark")
        if tshark_path is None:
            raise TsharkNotFoundError()
        return tshark_path

    def _get_version(self) -> str:
        """
        Get tshark version.

        Returns:
            Version string (e.g., "4.0.6")

        Raises:
            TsharkExecutionError: If the version command fails or output cannot be parsed
        """
        cmd = [self.tshark_path, "--version"]
        result = self._run(cmd, timeout=5)

        # First line: "TShark (Wireshark) 4.0.6 ..."
        first_line = result.stdout.split("\n")[0]
        parts = first_line.split()
        for i, part in enumerate(parts):
            if part.lower() == "tshark" and i + 1 < len(parts):
                version_idx = i + 2 if parts[i + 1].startswith("(") else i + 1
                if version_idx < len(parts):
                    return parts[version_idx]
        raise TsharkExecutionError(
            " ".join(cmd),
            0,
            f"Could not parse tshark version from: {first_line}",
        )

    def _run(self, cmd: list[str], timeout: int) -> subprocess.CompletedProcess[str]:
        try:
            return subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                check=True,
                timeout=timeout,
            )
        except subprocess.CalledProcessError as e:
            raise TsharkExecutionError(
                " ".join(cmd),
                e.returncode,
                e.stderr or str(e),
            ) from e
        except subprocess.TimeoutExpired as e:
            raise TsharkExecutionError(
                " ".join(cmd),
                -1,
                f"tshark command timed out after {getattr(e, 'timeout', 'unknown')} seconds",
            ) from e

    def list_interfaces(self) -> list[str]:
        """
        List capture interfaces known to tshark.

        Returns:
            Interface names in ``tshark -D`` order (index ``n`` is interface ``n+1``)

        Raises:
            TsharkExecutionError: If ``tshark -D`` fails
        """
        result = self._run([self.tshark_path, "-D"], timeout=10)

        interfaces = []
        # Lines look like "1. en0" or "3. eth0 (Ethernet)"
        for line in result.stdout.splitlines():
            _, sep, rest = line.partition(". ")
            if not sep:
                continue
            name = rest.split(" (", 1)[0].strip()
            if name:
                interfaces.append(name)
        return interfaces

    def stream(self, args: list[str]) -> subprocess.Popen[str]:
        """
        Start tshark with ``args`` and return the running process.

        Stdout is a line-buffered text pipe; the caller owns the process and
        must wait for or terminate it.

        Args:
            args: tshark arguments (without the executable)

        Returns:
            Running process

        Raises:
            OSError: If the process cannot be spawned
        """
        cmd = [self.tshark_path, *args]
        logger.debug("Starting: %s", " ".join(cmd))
        return subprocess.Popen(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            bufsize=1,
            encoding="utf-8",
            errors="replace",
        )
