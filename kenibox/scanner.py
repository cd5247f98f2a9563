"""Depth-limited directory walking and the two filesystem probes built on it."""
import datetime
import logging
import os
import sys

import psutil

from . import parsers
from .config import default_config
from .models import Finding, from_epoch, sort_by_time

log = logging.getLogger(__name__)


def _segments(path):
    return [s for s in path.replace('\\', '/').lower().split('/') if s]


def should_skip_directory(directory, config=None):
    """True when the directory's own name (or trailing path) is on the skip list.

    Only the tail is compared: during a walk every ancestor has already been
    checked, and the root an operator asks for is never rejected because of
    where it happens to live.
    """
    config = config or default_config()
    segs = _segments(directory)
    normalized = '/' + '/'.join(segs) if directory.startswith('/') else None
    if normalized and any(normalized == root.lower().rstrip('/') for root in config.skip_roots): return True
    for entry in config.skip_directories:
        tail = _segments(entry)
        if tail and segs[-len(tail):] == tail: return True
    return False


def walk(root, max_depth, config=None):
    """Yield ``(directory, entries)`` for ``root`` and its subdirectories.

    Symlinked directories are not followed; unreadable directories are skipped.
    """
    config = config or default_config()
    if should_skip_directory(root, config): return
    yield from _walk(root, 0, max_depth, config)


def _walk(directory, depth, max_depth, config):
    if depth > max_depth: return
    try:
        with os.scandir(directory) as it: entries = list(it)
    except PermissionError: return
    except OSError as e:
        log.debug("Could not read directory %s: %s", directory, e); return
    yield directory, entries
    for entry in entries:
        try: is_dir = entry.is_dir(follow_symlinks=False)
        except OSError: continue
        if is_dir and not should_skip_directory(entry.path, config):
            yield from _walk(entry.path, depth + 1, max_depth, config)


def _is_file(entry):
    try: return entry.is_file()
    except OSError: return False


def read_text(path):
    """``(text, modified)`` of a small text file, ``(None, None)`` when unreadable."""
    try:
        with open(path, 'r', encoding='utf-8', errors='replace') as f: text = f.read()
        return text, from_epoch(os.stat(path).st_mtime)
    except OSError: return None, None


def created_time(st):
    birth = getattr(st, 'st_birthtime', None)
    if birth is not None: return from_epoch(birth)
    return from_epoch(st.st_ctime)


def system_drives():
    try:
        if os.name == 'nt':
            return [p.mountpoint for p in psutil.disk_partitions(all=False) if p.mountpoint and 'cdrom' not in p.opts]
        if sys.platform == 'darwin':
            volumes = [os.path.join('/Volumes', v) for v in sorted(os.listdir('/Volumes'))]
            return ['/'] + [v for v in volumes if not os.path.islink(v)]
        return ['/']
    except Exception as e:
        log.error("Could not list drives: %s", e)
        return [os.path.expanduser('~')]


def default_extension_dirs(home=None):
    home = home or os.path.expanduser('~')
    dirs = [os.path.join(home, d) for d in ('Downloads', 'Desktop', 'Documents')]
    dirs += [os.path.join(home, 'AppData', 'Roaming', '.minecraft'), os.path.join(home, 'AppData', 'Local', 'Packages'),
             os.path.join(home, 'Games')]
    if os.name == 'nt': dirs += ['C:\\Games', 'D:\\Games', 'E:\\Games']
    return [d for d in dirs if os.path.isdir(d)]


def find_jar_files(roots=None, config=None, start=None, end=None):
    """Every ``.jar`` under ``roots`` (system drives by default), newest first."""
    config = config or default_config()
    result = []
    for root in roots if roots is not None else system_drives():
        for directory, entries in walk(root, config.jar_max_depth, config):
            for entry in entries:
                if not entry.name.lower().endswith('.jar') or not _is_file(entry): continue
                try: st = entry.stat()
                except OSError: continue
                modified = from_epoch(st.st_mtime)
                if start and modified < start: continue
                if end and modified > end: continue
                result.append(Finding(entry.name, 'Filesystem', modified, entry.path,
                                      {'size': st.st_size, 'lastModified': modified, 'createdTime': created_time(st)}))
    return sort_by_time(result)


def _similar_files(entries, current, base):
    similar = []
    for other in entries:
        if other.name == current or base.lower() not in other.name.lower(): continue
        try: similar.append({'name': other.name, 'path': other.path, 'modifiedTime': from_epoch(other.stat().st_mtime)})
        except OSError: continue
    return similar


def check_extension_changes(directories=None, config=None, now=None):
    """Recently modified files whose name hides a second extension (``cheat.jar.txt``)."""
    config = config or default_config()
    now = now or datetime.datetime.now()
    cutoff = now - datetime.timedelta(days=config.recent_days)
    result = []
    for root in directories if directories is not None else default_extension_dirs():
        for directory, entries in walk(root, config.extension_max_depth, config):
            for entry in entries:
                if not _is_file(entry) or not parsers.has_suspicious_extension(entry.name, config.suspicious_extensions): continue
                try: modified = from_epoch(entry.stat().st_mtime)
                except OSError: continue
                if modified is None or modified <= cutoff: continue
                base = parsers.original_name_guess(entry.name)
                similar = _similar_files(entries, entry.name, base) if base else []
                result.append(Finding(entry.name, 'Extension check', modified, entry.path, {
                    'modifiedTime': modified, 'originalNameGuess': base,
                    'reason': 'Possible extension change to hide the real file type', 'similarFiles': similar}))
    return sort_by_time(result)
