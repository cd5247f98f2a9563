import logging
import os

import psutil

from .. import parsers, scanner, shell
from ..models import Finding
from .base import Provider

log = logging.getLogger(__name__)

BROWSER_COMMANDS = [('google-chrome', 'Google Chrome'), ('chromium', 'Chromium'), ('chromium-browser', 'Chromium'),
                    ('firefox', 'Mozilla Firefox'), ('opera', 'Opera'), ('brave-browser', 'Brave'), ('brave', 'Brave'),
                    ('vivaldi', 'Vivaldi'), ('microsoft-edge', 'Microsoft Edge')]


class LinuxProvider(Provider):
    name = 'linux'
    library_key = 'linux'

    def deleted_files(self, since, minutes):
        result = []
        trash = self.path('.local', 'share', 'Trash')
        info_dir = os.path.join(trash, 'info')
        try: infos = [e for e in os.scandir(info_dir) if e.name.endswith('.trashinfo')]
        except OSError: return result
        for entry in infos:
            text, _ = scanner.read_text(entry.path)
            record = parsers.parse_trashinfo(text) if text else None
            if not record: continue
            original, when = record
            stored = os.path.join(trash, 'files', entry.name[:-len('.trashinfo')])
            if when < since or not os.path.lexists(stored): continue
            result.append(Finding(os.path.basename(original), 'Trash', when, original, {'deletedTime': when, 'inRecycleBin': True, 'trashedAs': stored}))
        return result

    def execution_history(self, since, hours):
        result = []
        ignored = tuple(self.config.ignored_history_prefixes)
        for path, source in ((self.path('.bash_history'), 'bash_history'), (self.path('.zsh_history'), 'zsh_history')):
            text, modified = scanner.read_text(path)
            if text is None: continue
            if source == 'zsh_history': entries = [parsers.split_zsh_line(line) for line in text.splitlines() if line.strip()]
            else: entries = parsers.parse_bash_history(text)
            entries = [(when, cmd) for when, cmd in entries if cmd.strip() and not cmd.startswith(ignored)]
            for when, command in entries[-self.config.history_lines:]:
                when = when or modified
                result.append(Finding(command.split()[0], source, when, path, {'command': command, 'startTime': when}))
        journal = shell.run(['journalctl', '--since', f'{int(hours)} hours ago', '-o', 'short', '--no-pager'], timeout=self.timeout)
        for when, service in parsers.parse_journal_started(journal):
            if when is None or when >= since: result.append(Finding(service, 'journalctl', when, None, {'startTime': when}))
        text, _ = scanner.read_text('/var/log/Xorg.0.log')
        for client in parsers.parse_xorg_clients(text or '')[-self.config.history_lines:]:
            result.append(Finding(client, 'Xorg.log', None, None, {'startTime': None}))
        return result

    def usb_disconnects(self, minutes):
        return [Finding(parsers.truncate(line, 100), 'dmesg', None, None, {'device': line, 'time': None})
                for line in parsers.parse_dmesg_usb(shell.run(['dmesg'], timeout=self.timeout))]

    def grabber_processes(self):
        found = []
        own = os.getpid()
        for proc in psutil.process_iter(['pid', 'cmdline']):
            cmd = ' '.join(proc.info.get('cmdline') or [])
            if proc.info['pid'] != own and cmd and parsers.matches_any(cmd, self.config.grabber_markers):
                found.append(parsers.truncate(cmd, 50))
        return found

    def browser_candidates(self):
        found = []
        for command, name in BROWSER_COMMANDS:
            path = shell.which(command)
            if path and all(p != path for _, p in found): found.append((name, path))
        return found

    def default_browser_hint(self):
        return shell.run(['xdg-settings', 'get', 'default-web-browser'], timeout=self.timeout).strip()

    def browser_profile_roots(self):
        config = self.path('.config')
        return [('Chrome', 'chromium', os.path.join(config, 'google-chrome')),
                ('Chromium', 'chromium', os.path.join(config, 'chromium')),
                ('Edge', 'chromium', os.path.join(config, 'microsoft-edge')),
                ('Brave', 'chromium', os.path.join(config, 'BraveSoftware', 'Brave-Browser')),
                ('Vivaldi', 'chromium', os.path.join(config, 'vivaldi')),
                ('Opera', 'chromium', os.path.join(config, 'opera')),
                ('Firefox', 'firefox', self.path('.mozilla', 'firefox'))]

    def services(self):
        result = super().services()
        markers = self.config.security_service_markers.get('linux', ())
        text = shell.run(['systemctl', 'list-units', '--type=service', '--state=inactive', '--no-legend', '--plain', '--no-pager'],
                         timeout=self.timeout)
        for unit, line in parsers.parse_systemctl_units(text):
            if parsers.matches_any(line, markers):
                result['stoppedServices'].append(Finding(unit, 'systemd', None, None, {
                    'displayName': unit, 'description': 'Linux security service', 'status': 'Inactive'}))
        return result

    def folder_history(self):
        text, _ = scanner.read_text(self.path('.local', 'share', 'recently-used.xbel'))
        return [Finding(os.path.basename(path) or path, 'Recent files', when, path, {'accessTime': when})
                for path, when in parsers.parse_xbel(text or '') if os.path.isdir(path)]
