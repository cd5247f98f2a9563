"""What every platform can tell about itself, with psutil/posix defaults.

A provider only gathers raw evidence. Matching it against the signature tables,
sorting and deduplicating is done by the probes.
"""
import logging
import os
import webbrowser

import psutil

from .. import parsers, scanner, shell
from ..config import default_config
from ..models import Finding, from_epoch

log = logging.getLogger(__name__)

PROCESS_ATTRS = ['pid', 'name', 'exe', 'cmdline', 'create_time']
PSUTIL_ERRORS = (psutil.Error, AttributeError, NotImplementedError, OSError)


def jar_finding(path, source, when):
    return Finding(parsers.base_name(path), source, when, path, {'startTime': when})


def process_key(name):
    """Name used to compare the two process listings; ``ps`` truncates to 15 characters."""
    name = (name or '').strip().lower()
    if name.endswith('.exe'): name = name[:-4]
    return name[:15]


class Provider:
    name = 'generic'
    library_key = None
    module_suffix = ('.so',)
    detailed_process_info = False
    process_tool = 'ps'

    def __init__(self, config=None, home=None):
        self.config = config or default_config()
        self.home = home or os.path.expanduser('~')

    @property
    def timeout(self):
        return self.config.command_timeout

    def path(self, *parts):
        return os.path.join(self.home, *parts)

    def minecraft_dirs(self):
        return [self.path('AppData', 'Roaming', '.minecraft'), self.path('.minecraft'),
                self.path('Library', 'Application Support', 'minecraft')]

    def java_log_dirs(self):
        return [self.path('.java', 'error'), self.path('.minecraft', 'logs'), self.path('AppData', 'Roaming', '.minecraft', 'logs'),
                self.path('Library', 'Logs', 'Java'), '/var/log/java']

    def deleted_files(self, since, minutes):
        return []

    def registry_jars(self, since):
        return []

    def execution_history(self, since, hours):
        return []

    def usb_disconnects(self, minutes):
        return []

    def running_programs(self):
        """``(label, texts)`` per running program; ``texts`` are what gets matched."""
        programs = []
        for proc in psutil.process_iter(['name']):
            name = proc.info.get('name')
            if name: programs.append((name, [name]))
        return programs

    def capture_devices(self):
        return []

    def capture_grants(self):
        return []

    def grabber_processes(self):
        return []

    def browser_candidates(self):
        """``(name, path)`` install locations worth checking."""
        return []

    def default_browser_hint(self):
        return ''

    def browser_profile_roots(self):
        """``(browser, engine, directory)`` where engine is chromium, firefox or safari."""
        return []

    def launch_url(self, browser, url):
        path = browser.get('path') or ''
        if path and os.path.isfile(path): return shell.launch([path, url])
        return webbrowser.open(url)

    def services(self):
        return {'stoppedServices': [], 'disabledServices': [], 'modifiedServices': []}

    def folder_history(self):
        return []

    def history_files(self):
        return [(self.path('.bash_history'), 'Bash'), (self.path('.zsh_history'), 'Zsh'), (self.path('.sh_history'), 'Shell'),
                (self.path('.history'), 'Shell'), (self.path('.local', 'share', 'fish', 'fish_history'), 'Fish')]

    def command_history(self):
        result = []
        for path, source in self.history_files():
            text, modified = scanner.read_text(path)
            if text is None: continue
            if source == 'Fish': entries = parsers.parse_fish_history(text)
            elif source == 'Zsh': entries = [parsers.split_zsh_line(line) for line in text.splitlines() if line.strip()]
            else: entries = parsers.parse_bash_history(text)
            for when, command in entries[-self.config.history_lines:]:
                when = when or modified
                result.append(Finding(command, source, when, path, {'command': command}))
        return result

    def process_table(self):
        rows = []
        for proc in psutil.process_iter(PROCESS_ATTRS):
            info = proc.info
            rows.append({'pid': info['pid'], 'name': info.get('name') or '', 'exe': info.get('exe') or '',
                         'cmdline': ' '.join(info.get('cmdline') or []), 'started': from_epoch(info.get('create_time')),
                         'company': '', 'description': ''})
        return rows

    def window_titles(self):
        return {}

    def alternate_process_names(self):
        names = set()
        for line in shell.run(['ps', '-A', '-o', 'comm='], timeout=self.timeout).splitlines():
            name = line.strip()
            if name.startswith('/'): name = os.path.basename(name)
            if name: names.add(name)
        return names

    def loaded_modules(self, pid):
        try: regions = psutil.Process(pid).memory_maps()
        except PSUTIL_ERRORS as e:
            log.debug("Could not read modules of %s: %s", pid, e); return []
        modules = []
        for region in regions:
            path = region.path or ''
            if any(s in path.lower() for s in self.module_suffix) and path not in modules: modules.append(path)
        return modules

    def is_system_module(self, path):
        name = os.path.basename(path)
        if parsers.is_allowed_module(name, self.config.module_allow_contains, ()): return True
        return any(path.startswith(d) for d in self.config.system_library_dirs.get(self.library_key, ()))

    def memory_descriptor(self, pid):
        descriptor = {'baseAddress': None, 'memorySize': None}
        try:
            proc = psutil.Process(pid)
            descriptor['memorySize'] = proc.memory_info().rss
            exe = proc.exe()
            for region in proc.memory_maps(grouped=False):
                if region.path == exe:
                    descriptor['baseAddress'] = '0x' + region.addr.split('-')[0].replace('0x', ''); break
        except PSUTIL_ERRORS as e:
            log.debug("Could not describe memory of %s: %s", pid, e)
        return descriptor

    def module_details(self, path):
        """``(company, description)`` of a loaded module."""
        return '', ''
