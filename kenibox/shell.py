"""Thin bridge to the platform's command line tools.

Everything here returns text (or decoded rows) and never raises unless the
caller asks for ``check=True``; probes treat the OS as a best-effort source.
"""
import csv
import io
import json
import logging
import os
import shutil
import subprocess
import sys
import threading

from .errors import CommandError

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60

# Detached programs started by launch() and reveal(); reap() waits on the finished ones.
_children = []
_children_lock = threading.Lock()


def _startupinfo():
    if os.name != 'nt': return None
    startupinfo = subprocess.STARTUPINFO(); startupinfo.dwFlags |= subprocess.STARTF_USESHOWWINDOW
    return startupinfo


def run(command, timeout=DEFAULT_TIMEOUT, check=False):
    """Run ``command`` (an argv list) and return its stdout.

    A missing executable, a timeout or a non-zero exit yields whatever stdout
    was produced (possibly ``''``) unless ``check`` is set.
    """
    shown = command if isinstance(command, str) else " ".join(command)
    try:
        proc = subprocess.run(command, stdout=subprocess.PIPE, stderr=subprocess.PIPE, stdin=subprocess.DEVNULL,
                              universal_newlines=True, errors='replace', timeout=timeout, startupinfo=_startupinfo())
    except subprocess.TimeoutExpired as e:
        log.warning("Command timed out after %ss: %s", timeout, shown)
        if check: raise CommandError(shown) from e
        return e.stdout if isinstance(e.stdout, str) else ''
    except OSError as e:
        log.debug("Could not run %s: %s", shown, e)
        if check: raise CommandError(shown, stderr=str(e)) from e
        return ''
    if proc.returncode != 0:
        if check: raise CommandError(shown, proc.returncode, proc.stderr)
        log.debug("%s exited with %s: %s", shown, proc.returncode, (proc.stderr or '').strip()[:200])
    return proc.stdout or ''


def powershell(script, timeout=DEFAULT_TIMEOUT):
    return run(['powershell', '-NoProfile', '-NonInteractive', '-ExecutionPolicy', 'Bypass', '-Command', script], timeout=timeout)


def powershell_json(script, timeout=DEFAULT_TIMEOUT):
    return parse_json(powershell(script, timeout=timeout))


def parse_json(text):
    """Decode ConvertTo-Json output; a single object comes back as a one-item list."""
    text = (text or '').strip()
    if not text: return []
    try: data = json.loads(text)
    except ValueError as e:
        log.debug("Could not decode command JSON: %s", e); return []
    if data is None: return []
    return data if isinstance(data, list) else [data]


def parse_csv(text):
    """Value lists of ``tasklist /fo csv`` output, header row dropped.

    The header is localized by Windows, so callers index the columns by position.
    """
    text = (text or '').strip()
    if not text: return []
    lines = [line for line in text.splitlines() if line.strip()]
    return [row for row in csv.reader(io.StringIO("\n".join(lines[1:]))) if row]


def which(name):
    return shutil.which(name)


def reap():
    """Collect exited children; the ones still running are kept."""
    with _children_lock: _children[:] = [p for p in _children if p.poll() is None]
    return len(_children)


def _spawn(command):
    reap()
    proc = subprocess.Popen(command, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL, startupinfo=_startupinfo(),
                            start_new_session=os.name != 'nt')
    with _children_lock: _children.append(proc)
    return proc


def launch(command):
    """Start ``command`` detached; ``False`` when it could not be started."""
    try: _spawn(command)
    except OSError as e:
        log.debug("Could not launch %s: %s", command, e); return False
    return True


def reveal(path, select=False):
    """Open ``path`` in the platform file manager."""
    if os.name == 'nt':
        if select: _spawn(['explorer.exe', f'/select,{path}'])
        else: os.startfile(path)
    elif sys.platform == 'darwin':
        _spawn(['open', '-R', path] if select else ['open', path])
    else:
        _spawn(['xdg-open', os.path.dirname(path) if select else path])
