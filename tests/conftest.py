import datetime
import os

import pytest

from kenibox.config import default_config
from kenibox.providers.base import Provider

NOW = datetime.datetime(2026, 1, 15, 12, 0, 0)


class FakeProvider(Provider):
    """Provider whose evidence comes from keyword arguments instead of the OS."""

    name = 'fake'
    library_key = 'linux'

    def __init__(self, config=None, home=None, **data):
        super().__init__(config, home)
        self.data = data
        self.launched = []

    def deleted_files(self, since, minutes):
        return [f for f in self.data.get('deleted', []) if f.timestamp is None or f.timestamp >= since]

    def registry_jars(self, since):
        return list(self.data.get('registry_jars', []))

    def execution_history(self, since, hours):
        return list(self.data.get('execution', []))

    def usb_disconnects(self, minutes):
        return list(self.data.get('usb', []))

    def running_programs(self):
        return list(self.data.get('programs', []))

    def capture_devices(self):
        return list(self.data.get('devices', []))

    def capture_grants(self):
        return list(self.data.get('grants', []))

    def grabber_processes(self):
        return list(self.data.get('grabbers', []))

    def browser_candidates(self):
        return list(self.data.get('candidates', []))

    def default_browser_hint(self):
        return self.data.get('hint', '')

    def browser_profile_roots(self):
        return list(self.data.get('profile_roots', []))

    def launch_url(self, browser, url):
        self.launched.append((browser['name'], url))
        return browser['name'] not in self.data.get('broken_browsers', ())

    def folder_history(self):
        return list(self.data.get('folders', []))

    def command_history(self):
        return list(self.data.get('commands', []))

    def process_table(self):
        return [dict(row) for row in self.data.get('table', [])]

    def window_titles(self):
        return dict(self.data.get('titles', {}))

    def alternate_process_names(self):
        return set(self.data.get('alternate', ()))

    def loaded_modules(self, pid):
        return list(self.data.get('modules', {}).get(pid, []))

    def memory_descriptor(self, pid):
        return {'baseAddress': '0x400000', 'memorySize': 1024}


def process_row(pid, name, exe='', cmdline='', company='', description='', started=None):
    return {'pid': pid, 'name': name, 'exe': exe, 'cmdline': cmdline, 'started': started,
            'company': company, 'description': description}


def touch(path, content='', mtime=None):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f: f.write(content)
    if mtime is not None:
        stamp = mtime.timestamp()
        os.utime(path, (stamp, stamp))
    return path


@pytest.fixture
def config():
    return default_config()


@pytest.fixture
def home(tmp_path):
    path = tmp_path / 'home'
    path.mkdir()
    return str(path)


@pytest.fixture
def make_provider(config, home):
    def factory(**data):
        return FakeProvider(config, home, **data)
    return factory


@pytest.fixture
def minecraft_profile(home):
    """A ``.minecraft`` folder with one legitimate and one cheat mod."""
    profile = os.path.join(home, '.minecraft')
    touch(os.path.join(profile, 'mods', 'OptiFine-1.19.jar'), 'x')
    touch(os.path.join(profile, 'mods', 'killaura-client.jar'), 'x')
    touch(os.path.join(profile, 'logs', 'latest.log'), '[main/INFO]: Setting user\n[main/ERROR]: Boom\n[main/WARN]: Careful\n')
    touch(os.path.join(profile, 'options.txt'), 'fov:70\n')
    return profile
