import logging
import ntpath
import os
import re
import struct

import psutil

from .. import parsers, scanner, shell
from ..models import Finding, from_epoch
from .base import Provider, jar_finding

if os.name == 'nt':
    import winreg
    import pythoncom
    import pywintypes
    import win32api
    import win32com.client

log = logging.getLogger(__name__)

EXPLORER = r"Software\Microsoft\Windows\CurrentVersion\Explorer"
COMPAT_STORE = r"Software\Microsoft\Windows NT\CurrentVersion\AppCompatFlags\Compatibility Assistant\Store"
OBJECT_NAME_RE = re.compile(r'Object Name:\s+([^\r\n]+)')

DELETE_EVENTS_PS = """
$start = (Get-Date).AddMinutes(-{minutes});
Get-WinEvent -FilterHashtable @{{LogName='Security'; StartTime=$start; Id=4663}} -ErrorAction SilentlyContinue |
  Where-Object {{ $_.Message -like '*DELETE*' }} | Select-Object TimeCreated, Message | ConvertTo-Json -Depth 1
"""
PROCESS_EVENTS_PS = """
$start = (Get-Date).AddHours(-{hours});
Get-WinEvent -FilterHashtable @{{LogName='Security'; StartTime=$start; Id=4688}} -MaxEvents 100 -ErrorAction SilentlyContinue |
  ForEach-Object {{ [PSCustomObject]@{{ Name = $_.Properties[5].Value; Time = $_.TimeCreated }} }} | ConvertTo-Json -Depth 1
"""
USB_EVENTS_PS = """
$start = (Get-Date).AddMinutes(-{minutes});
$events = @(Get-WinEvent -FilterHashtable @{{LogName='Microsoft-Windows-DriverFrameworks-UserMode/Operational'; Id=2100,2102; StartTime=$start}} -ErrorAction SilentlyContinue) +
          @(Get-WinEvent -FilterHashtable @{{LogName='System'; Id=6420,6421; StartTime=$start}} -ErrorAction SilentlyContinue);
$events | Where-Object {{ $_ -and $_.Message -match 'device|usb|removable|storage|flash|drive' }} |
  ForEach-Object {{ [PSCustomObject]@{{ Time = $_.TimeCreated; Device = ($_.Message -replace '\\s+', ' ') }} }} | ConvertTo-Json -Depth 1
"""
CAPTURE_DEVICES_PS = ("Get-CimInstance Win32_PnPEntity | Where-Object { $_.Caption -like '*capture*' -or $_.Caption -like '*video*' } | "
                      "Select-Object Caption | ConvertTo-Json -Depth 1")
EXPLORER_RECENT_PS = """
$items = (New-Object -ComObject Shell.Application).NameSpace('shell:::{679f85cb-0220-4080-b29b-5540cc05aab6}').Items();
$items | Where-Object { $_.IsFolder } | ForEach-Object {
  [PSCustomObject]@{ Name = $_.Name; Path = $_.Path; LastAccess = $_.ExtendedProperty('System.DateAccessed') } } | ConvertTo-Json -Depth 1
"""
MAIN_MODULE_PS = """
$p = Get-Process -Id {pid} -ErrorAction Stop;
[PSCustomObject]@{{ BaseAddress = '0x' + $p.MainModule.BaseAddress.ToString('X'); MemorySize = $p.MainModule.ModuleMemorySize }} | ConvertTo-Json
"""


def _subkeys(key):
    i = 0
    while True:
        try: yield winreg.EnumKey(key, i)
        except OSError: return
        i += 1


def _values(key):
    i = 0
    while True:
        try: yield winreg.EnumValue(key, i)
        except OSError: return
        i += 1


def _last_write(key):
    return parsers.filetime_to_datetime(winreg.QueryInfoKey(key)[2])


def utf16_text(data):
    if not isinstance(data, (bytes, bytearray)): return str(data or '')
    return bytes(data).decode('utf-16-le', errors='ignore').split('\x00', 1)[0]


def userassist_time(data):
    """Last run time stored at offset 60 of a Windows 7+ UserAssist value."""
    if not isinstance(data, (bytes, bytearray)) or len(data) < 68: return None
    return parsers.filetime_to_datetime(struct.unpack_from('<q', data, 60)[0])


def scan_recycle_bin(bin_dir, since):
    """Findings for ``$I`` records under every SID folder of a ``$Recycle.Bin``."""
    result = []
    try: sid_dirs = [e.path for e in os.scandir(bin_dir) if e.is_dir()]
    except OSError: return result
    for sid_dir in sid_dirs:
        try: entries = [e for e in os.scandir(sid_dir) if e.name.upper().startswith('$I')]
        except OSError: continue
        for entry in entries:
            try:
                with open(entry.path, 'rb') as f: record = parsers.parse_recycle_bin_info(f.read())
            except OSError: continue
            if not record: continue
            original, size, deleted_at = record
            if deleted_at is None or deleted_at < since: continue
            result.append(Finding(ntpath.basename(original) or entry.name, 'Recycle Bin', deleted_at, os.path.join(sid_dir, '$R' + entry.name[2:]),
                                  {'deletedTime': deleted_at, 'originalPath': original, 'size': size, 'inRecycleBin': True}))
    return result


def file_version_strings(path):
    """``(CompanyName, FileDescription)`` from the version resource of ``path``."""
    if not path: return '', ''
    try:
        lang, codepage = win32api.GetFileVersionInfo(path, '\\VarFileInfo\\Translation')[0]
        prefix = '\\StringFileInfo\\%04X%04X\\' % (lang, codepage)
        return (win32api.GetFileVersionInfo(path, prefix + 'CompanyName') or '',
                win32api.GetFileVersionInfo(path, prefix + 'FileDescription') or '')
    except (pywintypes.error, IndexError, TypeError): return '', ''


class WindowsProvider(Provider):
    name = 'windows'
    module_suffix = ('.dll',)
    detailed_process_info = True
    process_tool = 'tasklist'

    @property
    def local(self):
        return os.environ.get('LOCALAPPDATA') or self.path('AppData', 'Local')

    @property
    def roaming(self):
        return os.environ.get('APPDATA') or self.path('AppData', 'Roaming')

    def deleted_files(self, since, minutes):
        result = []
        for drive in scanner.system_drives(): result += scan_recycle_bin(os.path.join(drive, '$Recycle.Bin'), since)
        for event in shell.powershell_json(DELETE_EVENTS_PS.format(minutes=int(minutes)), timeout=self.timeout):
            match = OBJECT_NAME_RE.search(event.get('Message') or '')
            target = match.group(1).strip() if match else 'Unknown file'
            when = parsers.parse_timestamp(event.get('TimeCreated'))
            result.append(Finding(ntpath.basename(target), 'Event Log', when, target, {'deletedTime': when, 'operation': 'delete'}))
        return result

    def userassist(self):
        entries = []
        try:
            with winreg.OpenKey(winreg.HKEY_CURRENT_USER, EXPLORER + r"\UserAssist") as root:
                for guid in list(_subkeys(root)):
                    try:
                        with winreg.OpenKey(root, guid + r"\Count") as count:
                            for name, data, _ in _values(count): entries.append((parsers.rot13(name), userassist_time(data)))
                    except OSError: continue
        except OSError as e: log.debug("UserAssist not readable: %s", e)
        return entries

    def registry_jars(self, since):
        result = []
        try:
            with winreg.OpenKey(winreg.HKEY_CURRENT_USER, EXPLORER + r"\RecentDocs\.jar") as key:
                when = _last_write(key)
                if when and when >= since:
                    for name, data, _ in _values(key):
                        doc = utf16_text(data) if name != 'MRUListEx' else ''
                        if doc.lower().endswith('.jar'): result.append(jar_finding(doc, 'RecentDocs', when))
        except OSError: pass
        for name, when in self.userassist():
            if '.jar' in name.lower() and when and when >= since: result.append(jar_finding(name, 'UserAssist', when))
        jumplists = os.path.join(self.roaming, 'Microsoft', 'Windows', 'Recent', 'AutomaticDestinations')
        try: entries = list(os.scandir(jumplists))
        except OSError: entries = []
        for entry in entries:
            try:
                modified = from_epoch(entry.stat().st_mtime)
                if not modified or modified < since: continue
                with open(entry.path, 'rb') as f: text = f.read().decode('utf-16-le', errors='ignore')
            except OSError: continue
            for ref in parsers.find_jar_references(text): result.append(jar_finding(ref, 'JumpList', modified))
        return result

    def execution_history(self, since, hours):
        result = []
        prefetch = os.path.join(os.environ.get('SystemRoot', 'C:\\Windows'), 'Prefetch')
        try: entries = [e for e in os.scandir(prefetch) if e.name.lower().endswith('.pf')]
        except OSError: entries = []
        for entry in entries:
            try: modified = from_epoch(entry.stat().st_mtime)
            except OSError: continue
            if modified and modified >= since:
                result.append(Finding(parsers.prefetch_program_name(entry.name), 'Prefetch', modified, entry.path, {'startTime': modified}))
        for name, when in self.userassist():
            if not when or when < since or 'UEME_' in name: continue
            result.append(Finding(ntpath.basename(name) or name, 'UserAssist', when, name, {'startTime': when}))
        for hive in (winreg.HKEY_CURRENT_USER, winreg.HKEY_LOCAL_MACHINE):
            try:
                with winreg.OpenKey(hive, COMPAT_STORE) as key:
                    when = _last_write(key)
                    if not when or when < since: continue
                    for name, _, _ in _values(key): result.append(Finding(ntpath.basename(name), 'AppCompatFlags', when, name, {'startTime': when}))
            except OSError: continue
        for event in shell.powershell_json(PROCESS_EVENTS_PS.format(hours=int(hours)), timeout=self.timeout):
            name = event.get('Name') or ''
            when = parsers.parse_timestamp(event.get('Time'))
            if name: result.append(Finding(ntpath.basename(name), 'Event Log', when, name, {'startTime': when}))
        return result

    def usb_disconnects(self, minutes):
        result = []
        for event in shell.powershell_json(USB_EVENTS_PS.format(minutes=int(minutes)), timeout=self.timeout):
            device = parsers.truncate((event.get('Device') or '').strip(), 100)
            when = parsers.parse_timestamp(event.get('Time'))
            result.append(Finding(device, 'Event Log', when, None, {'device': device, 'time': when}))
        return result

    def _tasklist(self, verbose=False):
        """``(image name, pid, window title)`` per row; the title is only filled with ``verbose``."""
        command = ['tasklist', '/fo', 'csv', '/v'] if verbose else ['tasklist', '/fo', 'csv']
        rows = []
        for values in shell.parse_csv(shell.run(command, timeout=self.timeout)):
            try: pid = int(values[1])
            except (IndexError, ValueError): continue
            title = values[-1] if verbose and len(values) > 2 else ''
            rows.append((values[0], pid, '' if title == 'N/A' else title))
        return rows

    def running_programs(self):
        programs = []
        for name, _, title in self._tasklist(verbose=True):
            if name: programs.append((f"{name} ({title})" if title else name, [name, title]))
        for service in psutil.win_service_iter():
            try:
                if service.status() != 'running': continue
                programs.append((f"Service: {service.display_name()}", [service.name(), service.display_name()]))
            except (psutil.NoSuchProcess, psutil.AccessDenied, OSError): continue
        return programs

    def window_titles(self):
        titles = {}
        for _, pid, title in self._tasklist(verbose=True):
            if title: titles[pid] = title
        return titles

    def capture_devices(self):
        return [d.get('Caption') for d in shell.powershell_json(CAPTURE_DEVICES_PS, timeout=self.timeout) if d.get('Caption')]

    def browser_candidates(self):
        roots = [os.environ.get('ProgramFiles(x86)') or 'C:\\Program Files (x86)', os.environ.get('ProgramFiles') or 'C:\\Program Files']
        relative = [('Google Chrome', 'Google\\Chrome\\Application\\chrome.exe'), ('Mozilla Firefox', 'Mozilla Firefox\\firefox.exe'),
                    ('Microsoft Edge', 'Microsoft\\Edge\\Application\\msedge.exe'), ('Opera', 'Opera\\launcher.exe'),
                    ('Opera GX', 'Opera GX\\launcher.exe'), ('Brave', 'BraveSoftware\\Brave-Browser\\Application\\brave.exe'),
                    ('Vivaldi', 'Vivaldi\\Application\\vivaldi.exe'), ('Yandex Browser', 'Yandex\\YandexBrowser\\browser.exe')]
        candidates = [(name, os.path.join(root, rel)) for name, rel in relative for root in roots]
        candidates += [('Google Chrome', os.path.join(self.local, 'Google\\Chrome\\Application\\chrome.exe')),
                       ('Opera', os.path.join(self.local, 'Programs\\Opera\\launcher.exe')),
                       ('Opera GX', os.path.join(self.local, 'Programs\\Opera GX\\launcher.exe')),
                       ('Yandex Browser', os.path.join(self.local, 'Yandex\\YandexBrowser\\Application\\browser.exe'))]
        return candidates + self._start_menu_browsers()

    def _start_menu_browsers(self):
        found = []
        keywords = ('chrome', 'firefox', 'edge', 'opera', 'brave', 'vivaldi', 'yandex', 'browser')
        for base in (os.path.join(self.local, 'Programs'), os.path.join(self.roaming, 'Microsoft', 'Windows', 'Start Menu', 'Programs')):
            try: folders = [e for e in os.scandir(base) if e.is_dir() and parsers.matches_any(e.name, keywords)]
            except OSError: continue
            for folder in folders:
                try: exe = next((e.path for e in os.scandir(folder.path) if e.name.lower().endswith('.exe')), None)
                except OSError: continue
                if exe: found.append((folder.name, exe))
        return found

    def default_browser_hint(self):
        try:
            with winreg.OpenKey(winreg.HKEY_CURRENT_USER, r"Software\Microsoft\Windows\Shell\Associations\UrlAssociations\http\UserChoice") as key:
                return str(winreg.QueryValueEx(key, 'ProgId')[0])
        except OSError: return ''

    def browser_profile_roots(self):
        return [('Chrome', 'chromium', os.path.join(self.local, 'Google', 'Chrome', 'User Data')),
                ('Edge', 'chromium', os.path.join(self.local, 'Microsoft', 'Edge', 'User Data')),
                ('Brave', 'chromium', os.path.join(self.local, 'BraveSoftware', 'Brave-Browser', 'User Data')),
                ('Vivaldi', 'chromium', os.path.join(self.local, 'Vivaldi', 'User Data')),
                ('Opera', 'chromium', os.path.join(self.roaming, 'Opera Software', 'Opera Stable')),
                ('Opera GX', 'chromium', os.path.join(self.roaming, 'Opera Software', 'Opera GX Stable')),
                ('Firefox', 'firefox', os.path.join(self.roaming, 'Mozilla', 'Firefox', 'Profiles'))]

    def services(self):
        result = super().services()
        watched = {s['name'].lower(): s for s in self.config.watched_services}
        for service in psutil.win_service_iter():
            try: info = service.as_dict()
            except (psutil.NoSuchProcess, psutil.AccessDenied, OSError): continue
            entry = watched.get((info.get('name') or '').lower())
            if not entry: continue
            record = Finding(info['name'], 'Service Control Manager', None, None, {
                'displayName': info.get('display_name'), 'description': entry['description'],
                'status': info.get('status'), 'startType': info.get('start_type')})
            if info.get('status') == 'stopped': result['stoppedServices'].append(record)
            if info.get('start_type') == 'disabled': result['disabledServices'].append(record)
        markers = self.config.security_service_markers.get('win32', ())
        try:
            with winreg.OpenKey(winreg.HKEY_LOCAL_MACHINE, r"SYSTEM\CurrentControlSet\Services") as root:
                for name in list(_subkeys(root)):
                    if not parsers.matches_any(name, markers): continue
                    try:
                        with winreg.OpenKey(root, name) as key: start = winreg.QueryValueEx(key, 'Start')[0]
                    except OSError: continue
                    if start == 4:
                        result['modifiedServices'].append(Finding(name, 'Registry', None, 'HKLM\\SYSTEM\\CurrentControlSet\\Services\\' + name,
                                                                  {'modification': 'Security service disabled', 'value': start}))
        except OSError as e: log.debug("Services key not readable: %s", e)
        return result

    def folder_history(self):
        result = []
        recent = os.path.join(self.roaming, 'Microsoft', 'Windows', 'Recent')
        try: shortcuts = [e for e in os.scandir(recent) if e.name.lower().endswith('.lnk')]
        except OSError: shortcuts = []
        if shortcuts:
            pythoncom.CoInitialize()
            try:
                wsh = win32com.client.Dispatch("WScript.Shell")
                for entry in shortcuts:
                    try:
                        target = wsh.CreateShortcut(entry.path).TargetPath
                        accessed = from_epoch(entry.stat().st_mtime)
                    except (pywintypes.com_error, OSError): continue
                    if target and os.path.isdir(target):
                        result.append(Finding(ntpath.basename(target.rstrip('\\')) or target, 'Quick Access', accessed, target, {'accessTime': accessed}))
            except pywintypes.com_error as e: log.error("Could not resolve shortcuts: %s", e)
            finally: pythoncom.CoUninitialize()
        for item in shell.powershell_json(EXPLORER_RECENT_PS, timeout=self.timeout):
            when = parsers.parse_timestamp(item.get('LastAccess'))
            result.append(Finding(item.get('Name') or '', 'Explorer history', when, item.get('Path'), {'accessTime': when}))
        return result

    def history_files(self):
        return [(os.path.join(self.roaming, 'Microsoft', 'Windows', 'PowerShell', 'PSReadLine', 'ConsoleHost_history.txt'), 'PowerShell')]

    def command_history(self):
        result = super().command_history()
        try:
            with winreg.OpenKey(winreg.HKEY_CURRENT_USER, EXPLORER + r"\RunMRU") as key:
                when = _last_write(key)
                for name, value, _ in _values(key):
                    if len(name) == 1 and isinstance(value, str):
                        command = re.sub(r'\\1$', '', value)
                        result.append(Finding(command, 'RunMRU', when, None, {'command': command}))
        except OSError: pass
        try:
            with winreg.OpenKey(winreg.HKEY_CURRENT_USER, EXPLORER + r"\WordWheelQuery") as key:
                when = _last_write(key)
                for name, value, _ in _values(key):
                    text = utf16_text(value) if name.isdigit() else ''
                    if text: result.append(Finding(text, 'Search', when, None, {'command': text}))
        except OSError: pass
        return result

    def process_table(self):
        rows = super().process_table()
        versions = {}
        for row in rows:
            if row['exe'] not in versions: versions[row['exe']] = file_version_strings(row['exe'])
            row['company'], row['description'] = versions[row['exe']]
        return rows

    def alternate_process_names(self):
        return {name for name, _, _ in self._tasklist() if name}

    def is_system_module(self, path):
        return parsers.is_allowed_module(ntpath.basename(path), self.config.module_allow_contains, self.config.module_allow_prefixes)

    def memory_descriptor(self, pid):
        info = shell.powershell_json(MAIN_MODULE_PS.format(pid=int(pid)), timeout=self.timeout)
        if not info: return super().memory_descriptor(pid)
        return {'baseAddress': info[0].get('BaseAddress'), 'memorySize': info[0].get('MemorySize')}

    def module_details(self, path):
        return file_version_strings(path)
