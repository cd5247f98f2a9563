"""Pure text/record extraction helpers shared by the probes and providers."""
import datetime
import os
import plistlib
import re
import struct
import xml.etree.ElementTree as ET
from urllib.parse import unquote, urlparse

from .models import from_epoch

DOUBLE_EXT_RE = re.compile(r'^(.+)\.(jar|exe|dll|bat|vbs)\.(txt|png|jpg|jpeg)$', re.IGNORECASE)
JAR_ARG_RE = re.compile(r'-jar\s+["\']?([^"\'\s]+\.jar)', re.IGNORECASE)
QUOTED_JAR_RE = re.compile(r'["\']([^"\']+\.jar)["\']', re.IGNORECASE)
BARE_JAR_RE = re.compile(r'(?:[A-Za-z]:)?[-.\w/\\]+\.jar\b', re.IGNORECASE)
PS_DATE_RE = re.compile(r'/Date\((-?\d+)(?:[+-]\d+)?\)/')
ZSH_RE = re.compile(r'^:\s*(\d+):\d+;(.*)$')
STAMP_RE = re.compile(r'(\d{4}-\d{2}-\d{2}[ T]\d{2}:\d{2}:\d{2})')
SYSLOG_STAMP_RE = re.compile(r'^(\w{3}\s+\d+\s+\d+:\d+:\d+)')
DMESG_STAMP_RE = re.compile(r'^\[\s*\d+\.\d+\]\s*')

WINDOWS_EPOCH_OFFSET = 11_644_473_600
MAC_EPOCH_OFFSET = 978_307_200


def original_name_guess(filename):
    """``mod.jar.txt`` -> ``mod.jar``; ``None`` when there is no hidden extension."""
    match = DOUBLE_EXT_RE.match(filename)
    return f"{match.group(1)}.{match.group(2)}" if match else None


def has_suspicious_extension(filename, extensions):
    name = filename.lower()
    return any(ext.lower() in name for ext in extensions)


def match_keywords(text, keywords):
    """Keywords found in ``text`` (case-insensitive substring), in table order."""
    low = (text or '').lower(); hits = []
    for kw in keywords:
        if kw.lower() in low and kw not in hits: hits.append(kw)
    return hits


def matches_any(text, needles):
    low = (text or '').lower()
    return any(n.lower() in low for n in needles)


def classify_mod(filename, keywords, whitelist):
    """Suspicious keywords in a mod file name; empty when a whitelist entry also matches."""
    hits = match_keywords(filename, keywords)
    if hits and matches_any(filename, whitelist): return []
    return hits


def is_allowed_module(module_name, contains, prefixes):
    name = module_name.lower()
    return any(c in name for c in contains) or any(name.startswith(p) for p in prefixes)


def path_key(path):
    return os.path.normpath(path.replace('\\', '/')).replace('\\', '/').lower()


def rot13(s):
    out = []
    for c in s:
        if 'a' <= c <= 'z': out.append(chr((ord(c) - ord('a') + 13) % 26 + ord('a')))
        elif 'A' <= c <= 'Z': out.append(chr((ord(c) - ord('A') + 13) % 26 + ord('A')))
        else: out.append(c)
    return ''.join(out)


def filetime_to_datetime(ft):
    if not ft: return None
    return from_epoch(ft / 10_000_000 - WINDOWS_EPOCH_OFFSET)


def webkit_to_datetime(us):
    """Chromium ``last_visit_time``: microseconds since 1601-01-01 UTC."""
    if not us: return None
    return from_epoch(us / 1_000_000 - WINDOWS_EPOCH_OFFSET)


def prtime_to_datetime(us):
    """Firefox ``last_visit_date``: microseconds since the Unix epoch."""
    if not us: return None
    return from_epoch(us / 1_000_000)


def mac_absolute_to_datetime(seconds):
    """Safari ``visit_time``: seconds since 2001-01-01 UTC."""
    if seconds is None: return None
    return from_epoch(seconds + MAC_EPOCH_OFFSET)


def parse_timestamp(value):
    """Dates as PowerShell/JSON/log files emit them; ``None`` when unparseable."""
    if value is None or value == '': return None
    if isinstance(value, datetime.datetime): return value
    if isinstance(value, (int, float)): return from_epoch(value)
    text = str(value).strip()
    match = PS_DATE_RE.search(text)
    if match: return from_epoch(int(match.group(1)) / 1000)
    if text.endswith('Z'): text = text[:-1] + '+00:00'
    text = re.sub(r'(\.\d{6})\d+', r'\1', text)
    try: parsed = datetime.datetime.fromisoformat(text)
    except ValueError:
        for fmt in ('%m/%d/%Y %I:%M:%S %p', '%d/%m/%Y %H:%M:%S', '%Y-%m-%d %H:%M:%S'):
            try: return datetime.datetime.strptime(text, fmt)
            except ValueError: continue
        return None
    if parsed.tzinfo is not None: parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def extract_jar_path(command):
    if not command: return ''
    match = JAR_ARG_RE.search(command) or QUOTED_JAR_RE.search(command)
    return match.group(1) if match else ''


def find_jar_references(text):
    return BARE_JAR_RE.findall(text or '')


def prefetch_program_name(filename):
    return re.sub(r'-[^-]+\.pf$', '', filename, flags=re.IGNORECASE)


def parse_recycle_bin_info(data):
    """Decode a ``$I`` recycle bin record into ``(original_path, size, deleted_at)``.

    Version 1 (Vista/7) stores a fixed 260-character path at offset 24,
    version 2 (8/10/11) a 4-byte character count followed by the path.
    """
    if len(data) < 24: return None
    version, size, filetime = struct.unpack_from('<qqq', data, 0)
    if version == 2 and len(data) >= 28:
        count = struct.unpack_from('<i', data, 24)[0]
        raw = data[28:28 + count * 2]
    else:
        raw = data[24:24 + 520]
    name = raw.decode('utf-16-le', errors='ignore').split('\x00', 1)[0]
    return name, size, filetime_to_datetime(filetime)


def parse_trashinfo(text):
    """``(original_path, deleted_at)`` from a freedesktop ``.trashinfo`` file."""
    path = when = None
    for line in text.splitlines():
        if line.startswith('Path='): path = unquote(line[5:].strip())
        elif line.startswith('DeletionDate='): when = parse_timestamp(line[13:].strip())
    if not path or when is None: return None
    return path, when


def split_zsh_line(line):
    """``: 1700000000:0;cmd`` -> ``(datetime, 'cmd')``; other lines keep no time."""
    match = ZSH_RE.match(line)
    if match: return from_epoch(int(match.group(1))), match.group(2)
    return None, line


def parse_bash_history(text):
    """``(datetime|None, command)`` pairs; honours ``#<epoch>`` lines written with HISTTIMEFORMAT."""
    entries = []; pending = None
    for line in text.splitlines():
        if not line.strip(): continue
        if re.fullmatch(r'#\d{9,11}', line.strip()):
            pending = from_epoch(int(line.strip()[1:])); continue
        entries.append((pending, line)); pending = None
    return entries


def parse_fish_history(text):
    entries = []; command = None
    for line in text.splitlines():
        if line.startswith('- cmd: '):
            if command is not None: entries.append((None, command))
            command = line[7:]
        elif line.strip().startswith('when:') and command is not None:
            try: entries.append((from_epoch(int(line.split(':', 1)[1].strip())), command))
            except ValueError: entries.append((None, command))
            command = None
    if command is not None: entries.append((None, command))
    return entries


def parse_dmesg_usb(text):
    lines = []
    for line in text.splitlines():
        low = line.lower()
        if 'usb disconnect' in low or 'removed' in low:
            lines.append(DMESG_STAMP_RE.sub('', line).strip())
    return lines


def find_stamp(line):
    match = STAMP_RE.search(line)
    return parse_timestamp(match.group(1).replace('T', ' ')) if match else None


def parse_log_disconnects(text):
    """``log show`` lines that record a USB detach, with their timestamps."""
    out = []
    for line in text.splitlines():
        low = line.lower()
        if 'disconnect' in low or 'detach' in low: out.append((find_stamp(line), line.strip()))
    return out


def parse_launchctl(text):
    """``(status, label)`` pairs from ``launchctl list``; status is the PID column."""
    rows = []
    for line in text.splitlines()[1:]:
        parts = line.strip().split()
        if len(parts) >= 3: rows.append((parts[0], parts[-1]))
    return rows


def parse_systemctl_units(text):
    """``(unit, full_line)`` for each service row of ``systemctl list-units``."""
    units = []
    for line in text.splitlines():
        parts = line.replace('●', ' ').strip().split()
        if parts and parts[0].endswith('.service'): units.append((parts[0], line.strip()))
    return units


def parse_journal_started(text, year=None):
    """Services started according to ``journalctl`` short output."""
    year = year or datetime.datetime.now().year; out = []
    for line in text.splitlines():
        low = line.lower()
        if 'started' not in low and 'starting' not in low: continue
        stamp = SYSLOG_STAMP_RE.match(line)
        svc = re.search(r'Start(?:ed|ing)\s+([^.]+)', line, re.IGNORECASE)
        if not stamp or not svc: continue
        process = line[stamp.end():].split(':', 1)[0]
        if 'systemd' in process: continue
        try: when = datetime.datetime.strptime(f"{stamp.group(1)} {year}", '%b %d %H:%M:%S %Y')
        except ValueError: when = None
        out.append((when, svc.group(1).strip()))
    return out


def parse_launchd_log(text):
    out = []
    for line in text.splitlines():
        name = re.search(r"launched '([^']+)'", line)
        when = find_stamp(line)
        if name and when: out.append((when, name.group(1)))
    return out


def parse_xorg_clients(text):
    return [m.group(1).strip() for m in re.finditer(r'client connected: ([^(\n]+)', text, re.IGNORECASE)]


def file_url_to_path(url):
    parsed = urlparse(url)
    if parsed.scheme != 'file': return None
    return unquote(parsed.path).rstrip('/') or '/'


def parse_xbel(text):
    """``(path, modified)`` for every ``file://`` bookmark in a recently-used.xbel."""
    try: root = ET.fromstring(text)
    except ET.ParseError: return []
    out = []
    for node in root.iter('bookmark'):
        path = file_url_to_path(node.get('href', ''))
        if path: out.append((path, parse_timestamp(node.get('modified') or node.get('visited'))))
    return out


def parse_finder_recents(data):
    """Folder paths listed under ``FXRecentFolders`` in com.apple.finder.plist."""
    try: plist = plistlib.loads(data)
    except Exception: return []
    out = []
    for entry in plist.get('FXRecentFolders', []) or []:
        url = (entry.get('file-data') or {}).get('_CFURLString', '') if isinstance(entry, dict) else ''
        path = file_url_to_path(url) if url else None
        if path: out.append(path)
    return out


def parse_recent_apps(data):
    """Application names from a LSSharedFileList RecentApplications plist."""
    try: plist = plistlib.loads(data)
    except Exception: return []
    items = (plist.get('RecentApplications') or {}).get('CustomListItems') or plist.get('items') or []
    return [item.get('Name') for item in items if isinstance(item, dict) and item.get('Name')]


def parse_launchservices_http(data):
    """Bundle id handling ``http`` in com.apple.launchservices.secure.plist, ``''`` if unset."""
    try: plist = plistlib.loads(data)
    except Exception: return ''
    for handler in plist.get('LSHandlers', []) or []:
        if isinstance(handler, dict) and handler.get('LSHandlerURLScheme') == 'http':
            return handler.get('LSHandlerRoleAll', '') or ''
    return ''


def parse_lsof_names(text, suffixes):
    """File names from ``lsof -Fn`` output that end in one of ``suffixes``."""
    names = []
    for line in text.splitlines():
        if not line.startswith('n'): continue
        name = line[1:].strip()
        if name.lower().endswith(tuple(suffixes)) and name not in names: names.append(name)
    return names


def relevant_log_lines(text, markers, limit):
    return [line for line in text.splitlines() if any(m in line for m in markers)][:limit]


def truncate(text, limit):
    return text if len(text) <= limit else text[:limit] + '...'


def base_name(path):
    """Last component of a Windows or posix path."""
    return (path or '').replace('\\', '/').rstrip('/').rsplit('/', 1)[-1]
