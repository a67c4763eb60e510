"""Subprocess wrapper used for every external delegate.

Secrets never travel on argv. They are streamed into an anonymous pipe by a
short-lived writer thread and the read end becomes the child's stdin.
"""

from __future__ import annotations

import contextlib
import logging
import os
import subprocess
import threading
from typing import Iterator, List, Optional

logger = logging.getLogger(__name__)


class CommandError(Exception):
    def __init__(self, cmd: List[str], returncode: Optional[int], stderr: str):
        self.cmd = list(cmd)
        self.returncode = returncode
        self.stderr = stderr
        detail = stderr or (f"exit status {returncode}" if returncode is not None else "not executed")
        super().__init__(f"{' '.join(self.cmd)} failed: {detail}")


@contextlib.contextmanager
def secret_pipe(secret: bytes) -> Iterator[int]:
    """Yield the read end of a pipe that receives ``secret`` exactly once.

    The writer thread is joined and both descriptors are closed before the
    context exits, so no secret bytes outlive the consuming command.
    """
    read_fd, write_fd = os.pipe()
    errors: List[BaseException] = []

    def _writer() -> None:
        view = memoryview(secret)
        try:
            while view:
                written = os.write(write_fd, view)
                view = view[written:]
        except BrokenPipeError:
            # Consumer exited before reading everything; its exit code reports the failure.
            pass
        except OSError as exc:
            errors.append(exc)
        finally:
            os.close(write_fd)

    writer = threading.Thread(target=_writer, name="secret-pipe-writer", daemon=True)
    writer.start()
    try:
        yield read_fd
    finally:
        os.close(read_fd)
        writer.join()
    if errors:
        raise errors[0]


def run_command(cmd: List[str], secret: Optional[bytes] = None) -> subprocess.CompletedProcess:
    logger.debug("exec: %s", " ".join(cmd))
    try:
        if secret is None:
            return subprocess.run(cmd, stdin=subprocess.DEVNULL, capture_output=True, check=True)
        with secret_pipe(secret) as stdin_fd:
            return subprocess.run(cmd, stdin=stdin_fd, capture_output=True, check=True)
    except subprocess.CalledProcessError as exc:
        stderr = exc.stderr.decode(errors="replace").strip() if exc.stderr else ""
        raise CommandError(cmd, exc.returncode, stderr) from exc
    except FileNotFoundError as exc:
        raise CommandError(cmd, None, f"{cmd[0]}: command not found") from exc
