# -*- coding: utf-8 -*-
"""
sandbox.py
Runs an untrusted script in a throwaway node process.

The script is written to a uniquely named temp file, executed with a reduced
environment and a bounded wait, and deleted afterwards whatever happened.
Only the textual output (stdout + stderr) comes back.
"""
from __future__ import annotations

import logging
import os
import subprocess
import time
import uuid
from typing import List, Optional, Sequence

from . import settings
from .errors import ResolutionError

logger = logging.getLogger(__name__)

# node's permission model; once on, the script itself must be granted read access
PERMISSION_FLAGS = ("--permission", "--experimental-permission")


def temp_script_path(tmp_dir: str) -> str:
    return os.path.join(tmp_dir, f"kwik-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}.js")


def _text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


def combine_output(stdout: Optional[str], stderr: Optional[str]) -> str:
    out, err = _text(stdout), _text(stderr)
    return out + (f"\n[stderr]\n{err}" if err else "")


def _sandbox_env() -> dict:
    # no HOME, no proxy variables, no NODE_OPTIONS: only enough to find node
    return {"PATH": os.environ.get("PATH", "")}


def _run(cmd: List[str], *, cwd: str, timeout: float) -> subprocess.CompletedProcess:
    try:
        return subprocess.run(
            cmd,
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            cwd=cwd,
            env=_sandbox_env(),
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        # run() has already killed and reaped the child
        partial = combine_output(e.stdout, e.stderr)
        raise ResolutionError.from_output(f"Sandbox timed out after {timeout:g}s", partial) from e
    except OSError as e:
        raise ResolutionError(f"sandbox_launch_error: {e}") from e


def node_argv(node_command: str, node_flags: Sequence[str], path: str) -> List[str]:
    flags = list(node_flags)
    if any(f in PERMISSION_FLAGS for f in flags):
        flags.append(f"--allow-fs-read={path}")
    return [node_command, *flags, path]


def run_sandboxed(
    program: str,
    *,
    node_command: str = settings.NODE_COMMAND,
    node_flags: Sequence[str] = tuple(settings.SANDBOX_NODE_FLAGS),
    timeout: float = settings.SANDBOX_TIMEOUT,
    tmp_dir: str = settings.SANDBOX_TMP_DIR,
) -> str:
    """Execute ``program`` with node and return its combined output."""
    path = temp_script_path(tmp_dir)
    with open(path, "w", encoding="utf-8") as f:
        f.write(program)
    try:
        proc = _run(node_argv(node_command, node_flags, path), cwd=tmp_dir, timeout=timeout)
    finally:
        try:
            os.remove(path)
        except OSError:
            logger.warning("could not remove sandbox script %s", path, exc_info=True)
    logger.debug("sandbox rc=%s stdout=%d chars stderr=%d chars",
                 proc.returncode, len(proc.stdout or ""), len(proc.stderr or ""))
    return combine_output(proc.stdout, proc.stderr)
