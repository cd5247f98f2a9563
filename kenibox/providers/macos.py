import datetime
import logging
import os

from .. import parsers, scanner, shell, snapshot
from ..models import Finding, from_epoch
from .base import Provider

log = logging.getLogger(__name__)

TCC_QUERY = "SELECT client FROM access WHERE service = 'kTCCServiceScreenCapture'"
BROWSER_APPS = [('Google Chrome', '/Applications/Google Chrome.app'), ('Mozilla Firefox', '/Applications/Firefox.app'),
                ('Safari', '/Applications/Safari.app'), ('Opera', '/Applications/Opera.app'), ('Opera GX', '/Applications/Opera GX.app'),
                ('Brave', '/Applications/Brave Browser.app'), ('Vivaldi', '/Applications/Vivaldi.app'),
                ('Microsoft Edge', '/Applications/Microsoft Edge.app'), ('Yandex Browser', '/Applications/Yandex.app')]


def _read_bytes(path):
    try:
        with open(path, 'rb') as f: return f.read()
    except OSError: return None


class MacProvider(Provider):
    name = 'macos'
    library_key = 'darwin'
    module_suffix = ('.dylib',)

    @property
    def support(self):
        return self.path('Library', 'Application Support')

    def deleted_files(self, since, minutes):
        result = []
        for directory, entries in scanner.walk(self.path('.Trash'), self.config.extension_max_depth, self.config):
            for entry in entries:
                try: modified = from_epoch(entry.stat(follow_symlinks=False).st_mtime)
                except OSError: continue
                if modified and modified >= since:
                    result.append(Finding(entry.name, 'Trash', modified, entry.path, {'deletedTime': modified, 'inRecycleBin': True}))
        return result

    def execution_history(self, since, hours):
        result = []
        shared = os.path.join(self.support, 'com.apple.sharedfilelist')
        for name in ('com.apple.LSSharedFileList.RecentApplications.sfl2', 'com.apple.LSSharedFileList.RecentApplications'):
            data = _read_bytes(os.path.join(shared, name))
            for app in parsers.parse_recent_apps(data) if data else []:
                result.append(Finding(app, 'Recent applications', None, None, {'startTime': None}))
        text = shell.run(['log', 'show', '--predicate', 'process == "launchd"', '--style', 'compact', '--last', f'{int(hours)}h'],
                         timeout=self.timeout)
        for when, name in parsers.parse_launchd_log(text):
            if when >= since: result.append(Finding(name, 'launchd log', when, None, {'startTime': when}))
        return result

    def usb_disconnects(self, minutes):
        text = shell.run(['log', 'show', '--predicate', "subsystem == 'com.apple.iokit.IOUSBFamily'", '--style', 'compact',
                          '--last', f'{int(minutes)}m'], timeout=self.timeout)
        return [Finding('USB device', 'Unified log', when, None, {'device': 'USB device', 'time': when, 'line': parsers.truncate(line, 200)})
                for when, line in parsers.parse_log_disconnects(text)]

    def capture_grants(self):
        clients = []
        for db in ('/Library/Application Support/com.apple.TCC/TCC.db', os.path.join(self.support, 'com.apple.TCC', 'TCC.db')):
            if not os.path.exists(db): continue
            for (client,) in snapshot.query_copy(db, TCC_QUERY):
                if client and client not in clients: clients.append(client)
        return clients

    def browser_candidates(self):
        return list(BROWSER_APPS)

    def default_browser_hint(self):
        data = _read_bytes(self.path('Library', 'Preferences', 'com.apple.LaunchServices', 'com.apple.launchservices.secure.plist'))
        return parsers.parse_launchservices_http(data) if data else ''

    def browser_profile_roots(self):
        return [('Chrome', 'chromium', os.path.join(self.support, 'Google', 'Chrome')),
                ('Edge', 'chromium', os.path.join(self.support, 'Microsoft Edge')),
                ('Brave', 'chromium', os.path.join(self.support, 'BraveSoftware', 'Brave-Browser')),
                ('Vivaldi', 'chromium', os.path.join(self.support, 'Vivaldi')),
                ('Opera', 'chromium', os.path.join(self.support, 'com.operasoftware.Opera')),
                ('Opera GX', 'chromium', os.path.join(self.support, 'com.operasoftware.OperaGX')),
                ('Firefox', 'firefox', os.path.join(self.support, 'Firefox', 'Profiles')),
                ('Safari', 'safari', self.path('Library', 'Safari', 'History.db'))]

    def launch_url(self, browser, url):
        return shell.launch(['open', '-a', browser.get('path') or browser['name'], url])

    def services(self):
        result = super().services()
        markers = self.config.security_service_markers.get('darwin', ())
        for status, label in parsers.parse_launchctl(shell.run(['launchctl', 'list'], timeout=self.timeout)):
            if status == '-' and parsers.matches_any(label, markers):
                result['stoppedServices'].append(Finding(label, 'launchctl', None, None, {
                    'displayName': label, 'description': 'macOS security service', 'status': 'Stopped'}))
        return result

    def folder_history(self):
        result = []
        cutoff = datetime.datetime.now() - datetime.timedelta(days=self.config.recent_days)
        for directory, entries in scanner.walk(self.home, self.config.extension_max_depth, self.config):
            store = next((e for e in entries if e.name == '.DS_Store'), None)
            if store is None: continue
            try: modified = from_epoch(store.stat().st_mtime)
            except OSError: continue
            if modified and modified >= cutoff:
                result.append(Finding(os.path.basename(directory), '.DS_Store', modified, directory, {'accessTime': modified}))
        data = _read_bytes(self.path('Library', 'Preferences', 'com.apple.finder.plist'))
        for folder in parsers.parse_finder_recents(data) if data else []:
            result.append(Finding(os.path.basename(folder) or folder, 'Finder recents', None, folder, {'accessTime': None}))
        return result

    def loaded_modules(self, pid):
        return parsers.parse_lsof_names(shell.run(['lsof', '-p', str(pid), '-Fn'], timeout=self.timeout), self.module_suffix)
