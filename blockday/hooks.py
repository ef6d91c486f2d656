"""Shell hooks at timer transition points.

Configured via hooks.yaml in the workspace root, e.g.::

    on_timer_complete:
      - notify-send "Block done"
      - command: ./log-block.sh
        timeout: 10

Hook points:
- on_timer_start, on_timer_complete
- on_boundary_crossed_background
- on_break_notify
- on_grace_period
- on_block_skipped

Context is passed as JSON via stdin. ``fire_hooks`` starts the commands and
returns without waiting, reaping them (and killing them past their timeout)
on a background thread; ``run_hooks`` waits and collects results.
"""

from __future__ import annotations

import json
import logging
import subprocess
import threading
from pathlib import Path
from typing import Any

from blockday.fileio import read_yaml
from blockday.workspace import hooks_config_path, workspace_root

logger = logging.getLogger(__name__)

VALID_HOOK_POINTS = {
    "on_timer_start",
    "on_timer_complete",
    "on_boundary_crossed_background",
    "on_break_notify",
    "on_grace_period",
    "on_block_skipped",
}

DEFAULT_TIMEOUT = 30


def load_hooks_config(root: Path | None = None) -> dict[str, Any]:
    """Load hooks configuration from hooks.yaml."""
    if root is None:
        root = workspace_root()
    path = hooks_config_path(root)
    if not path.exists():
        return {}
    return read_yaml(path)


def _commands(hook_point: str, root: Path) -> list[tuple[str, int]]:
    if hook_point not in VALID_HOOK_POINTS:
        return []
    hooks = load_hooks_config(root).get(hook_point, [])
    if not hooks or not isinstance(hooks, list):
        return []
    out = []
    for hook in hooks:
        if isinstance(hook, str):
            command, timeout = hook, DEFAULT_TIMEOUT
        elif isinstance(hook, dict):
            command = hook.get("command", "")
            timeout = hook.get("timeout", DEFAULT_TIMEOUT)
        else:
            continue
        if command:
            out.append((command, timeout))
    return out


def run_hooks(
    hook_point: str,
    context: dict[str, Any],
    root: Path | None = None,
) -> list[dict[str, Any]]:
    """Run all hooks registered for a hook point and wait for them.

    Returns list of results with stdout/stderr and exit codes.
    """
    if root is None:
        root = workspace_root()

    results = []
    context_json = json.dumps(context, ensure_ascii=False)

    for command, timeout in _commands(hook_point, root):
        result: dict[str, Any] = {"command": command, "hook_point": hook_point}
        try:
            proc = subprocess.run(
                command,
                shell=True,
                input=context_json,
                capture_output=True,
                text=True,
                timeout=timeout,
                cwd=str(root),
            )
            result["exit_code"] = proc.returncode
            result["stdout"] = proc.stdout[:4096]
            result["stderr"] = proc.stderr[:4096]
        except subprocess.TimeoutExpired:
            result["exit_code"] = -1
            result["error"] = f"Hook timed out after {timeout}s"
        except OSError as e:
            result["exit_code"] = -1
            result["error"] = str(e)
        results.append(result)

    return results


def _reap(proc: subprocess.Popen, hook_point: str, timeout: int) -> None:
    try:
        proc.wait(timeout=timeout)
    except subprocess.TimeoutExpired:
        logger.warning("Hook %s timed out after %ss; killing it", hook_point, timeout)
        proc.kill()
        proc.wait()


def fire_hooks(
    hook_point: str,
    context: dict[str, Any],
    root: Path | None = None,
) -> list[subprocess.Popen]:
    """Start all hooks for a hook point without waiting for them to finish."""
    if root is None:
        root = workspace_root()

    started = []
    context_json = json.dumps(context, ensure_ascii=False)
    for command, timeout in _commands(hook_point, root):
        try:
            proc = subprocess.Popen(
                command,
                shell=True,
                stdin=subprocess.PIPE,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                text=True,
                cwd=str(root),
            )
        except OSError as e:
            logger.warning("Hook %s (%s) failed to start: %s", hook_point, command, e)
            continue
        assert proc.stdin is not None
        try:
            proc.stdin.write(context_json)
            proc.stdin.close()
        except OSError as e:
            logger.warning("Hook %s (%s) did not take its context: %s", hook_point, command, e)
        threading.Thread(target=_reap, args=(proc, hook_point, timeout), daemon=True).start()
        logger.debug("Fired hook %s: %s", hook_point, command)
        started.append(proc)
    return started
