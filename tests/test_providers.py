"""Tests for the platform providers, run against temporary home folders."""

import datetime
import dataclasses
import os
import plistlib
import struct
import sys

import pytest

from kenibox import parsers, probes
from kenibox.models import from_epoch
from kenibox.providers import get_provider
from kenibox.providers.base import Provider, jar_finding, process_key
from kenibox.providers.linux import LinuxProvider
from kenibox.providers.macos import MacProvider
from kenibox.providers.windows import WindowsProvider, scan_recycle_bin, userassist_time, utf16_text
from tests.conftest import NOW, touch


def filetime(epoch):
    return int((epoch + parsers.WINDOWS_EPOCH_OFFSET) * 10_000_000)


class TestBaseProvider:
    def test_process_key(self):
        assert process_key('Java.EXE') == 'java'
        assert process_key('a-very-long-process-name') == 'a-very-long-pro'
        assert process_key(None) == ''

    def test_jar_finding(self):
        finding = jar_finding('C:\\mods\\client.jar', 'UserAssist', NOW)
        assert (finding.name, finding.path, finding.get('startTime')) == ('client.jar', 'C:\\mods\\client.jar', NOW)

    def test_command_history_reads_every_shell(self, config, home):
        touch(os.path.join(home, '.bash_history'), '#1700000000\njava -jar x.jar\n')
        touch(os.path.join(home, '.zsh_history'), ': 1700000100:0;ls -la\n')
        touch(os.path.join(home, '.local', 'share', 'fish', 'fish_history'), '- cmd: pwd\n  when: 1700000200\n')
        history = Provider(config, home).command_history()
        assert [(f.name, f.source, f.timestamp) for f in history] == [
            ('java -jar x.jar', 'Bash', from_epoch(1_700_000_000)),
            ('ls -la', 'Zsh', from_epoch(1_700_000_100)),
            ('pwd', 'Fish', from_epoch(1_700_000_200))]

    def test_command_history_keeps_last_lines(self, config, home):
        config = dataclasses.replace(config, history_lines=2)
        touch(os.path.join(home, '.bash_history'), 'one\ntwo\nthree\n', mtime=NOW)
        history = Provider(config, home).command_history()
        assert [f.name for f in history] == ['two', 'three']
        assert all(f.timestamp == NOW for f in history)

    def test_system_modules(self, config, home):
        provider = LinuxProvider(config, home)
        assert provider.is_system_module('/usr/lib/x86_64-linux-gnu/libc.so.6')
        assert provider.is_system_module('/opt/jdk/lib/libjvm.so')
        assert not provider.is_system_module('/tmp/inject.so')

    def test_alternate_process_names(self, config, home, mocker):
        mocker.patch('kenibox.shell.run', return_value='systemd\n/usr/bin/java\n\n')
        assert Provider(config, home).alternate_process_names() == {'systemd', 'java'}


class TestWindowsHelpers:
    def test_utf16_text(self):
        assert utf16_text('C:\\x'.encode('utf-16-le') + b'\x00\x00junk') == 'C:\\x'
        assert utf16_text(None) == ''

    def test_userassist_time(self):
        data = bytes(60) + struct.pack('<q', filetime(1_700_000_000)) + bytes(4)
        assert userassist_time(data) == from_epoch(1_700_000_000)
        assert userassist_time(b'short') is None

    def test_scan_recycle_bin(self, tmp_path):
        name = 'C:\\Users\\p\\Desktop\\cheat.jar'
        record = struct.pack('<qqq', 2, 99, filetime(1_700_000_000)) + struct.pack('<i', len(name) + 1) + (name + '\x00').encode('utf-16-le')
        sid = tmp_path / '$Recycle.Bin' / 'S-1-5-21'
        sid.mkdir(parents=True)
        (sid / '$IABC123.jar').write_bytes(record)
        (sid / '$RABC123.jar').write_bytes(b'x')
        (sid / 'desktop.ini').write_bytes(b'')
        found = scan_recycle_bin(str(tmp_path / '$Recycle.Bin'), from_epoch(1_600_000_000))
        assert len(found) == 1
        assert found[0].name == 'cheat.jar'
        assert found[0].path == os.path.join(str(sid), '$RABC123.jar')
        assert found[0].get('originalPath') == name
        assert found[0].get('size') == 99

    def test_scan_recycle_bin_respects_window(self, tmp_path):
        assert scan_recycle_bin(str(tmp_path / 'missing'), NOW) == []


class TestLinuxProvider:
    def test_deleted_files_from_trash(self, config, home):
        trash = os.path.join(home, '.local', 'share', 'Trash')
        touch(os.path.join(trash, 'info', 'x.jar.trashinfo'), '[Trash Info]\nPath=/home/p/x.jar\nDeletionDate=2026-01-15T11:50:00\n')
        touch(os.path.join(trash, 'files', 'x.jar'), 'x')
        touch(os.path.join(trash, 'info', 'old.txt.trashinfo'), '[Trash Info]\nPath=/home/p/old.txt\nDeletionDate=2025-01-01T00:00:00\n')
        touch(os.path.join(trash, 'files', 'old.txt'), 'x')
        touch(os.path.join(trash, 'info', 'gone.jar.trashinfo'), '[Trash Info]\nPath=/home/p/gone.jar\nDeletionDate=2026-01-15T11:55:00\n')
        found = LinuxProvider(config, home).deleted_files(NOW - datetime.timedelta(minutes=60), 60)
        assert [(f.name, f.path, f.timestamp) for f in found] == [('x.jar', '/home/p/x.jar', datetime.datetime(2026, 1, 15, 11, 50))]

    def test_folder_history_keeps_directories(self, config, home, tmp_path):
        games = tmp_path / 'Games'
        games.mkdir()
        touch(str(tmp_path / 'notes.txt'))
        touch(os.path.join(home, '.local', 'share', 'recently-used.xbel'),
              f'<xbel version="1.0"><bookmark href="file://{games}" modified="2026-01-15T10:00:00Z"/>'
              f'<bookmark href="file://{tmp_path}/notes.txt"/></xbel>')
        found = LinuxProvider(config, home).folder_history()
        assert [(f.name, f.path) for f in found] == [('Games', str(games))]

    def test_inactive_security_services(self, config, home, mocker):
        mocker.patch('kenibox.shell.run', return_value=(
            '● apparmor.service loaded inactive dead Load AppArmor profiles\n'
            'cron.service loaded inactive dead Regular background program processing daemon\n'))
        result = LinuxProvider(config, home).services()
        assert [f.name for f in result['stoppedServices']] == ['apparmor.service']
        assert result['disabledServices'] == [] and result['modifiedServices'] == []

    def test_usb_disconnects(self, config, home, mocker):
        mocker.patch('kenibox.shell.run', return_value='[  5.1] usb 1-2: USB disconnect, device number 3\n[  6.0] eth0 up\n')
        found = LinuxProvider(config, home).usb_disconnects(60)
        assert [f.name for f in found] == ['usb 1-2: USB disconnect, device number 3']

    def test_execution_history_skips_navigation(self, config, home, mocker):
        mocker.patch('kenibox.shell.run', return_value='')
        touch(os.path.join(home, '.bash_history'), '#1700000000\njava -jar client.jar\nls -la\ncd /tmp\n')
        found = [f for f in LinuxProvider(config, home).execution_history(NOW, 4) if f.source == 'bash_history']
        assert [(f.name, f.get('command')) for f in found] == [('java', 'java -jar client.jar')]


TASKLIST_ES = ('"Nombre de imagen","PID","Nombre de sesión","Núm. de sesión","Uso de memoria"\r\n'
               '"obs64.exe","42","Console","1","120.000 KB"\r\n'
               '"cheat.exe","77","Console","1","3.000 KB"\r\n')
TASKLIST_ES_VERBOSE = ('"Nombre de imagen","PID","Nombre de sesión","Núm. de sesión","Uso de memoria","Estado",'
                       '"Nombre de usuario","Tiempo de CPU","Título de ventana"\r\n'
                       '"obs64.exe","42","Console","1","120.000 KB","Running","PC\\p","0:00:10","OBS 30.0 - Escenas"\r\n'
                       '"cheat.exe","77","Console","1","3.000 KB","Running","PC\\p","0:00:01","N/A"\r\n')


class TestWindowsProvider:
    @pytest.fixture
    def provider(self, config, home):
        return WindowsProvider(config, home)

    @pytest.fixture
    def services(self, mocker):
        running, stopped = mocker.Mock(), mocker.Mock()
        running.status.return_value = 'running'
        running.name.return_value, running.display_name.return_value = 'Spooler', 'Print Spooler'
        stopped.status.return_value = 'stopped'
        return mocker.patch('kenibox.providers.windows.psutil.win_service_iter', create=True, return_value=[running, stopped])

    def test_alternate_names_with_localized_header(self, provider, mocker):
        run = mocker.patch('kenibox.shell.run', return_value=TASKLIST_ES)
        assert provider.alternate_process_names() == {'obs64.exe', 'cheat.exe'}
        assert run.call_args.args[0] == ['tasklist', '/fo', 'csv']

    def test_window_titles_with_localized_header(self, provider, mocker):
        mocker.patch('kenibox.shell.run', return_value=TASKLIST_ES_VERBOSE)
        assert provider.window_titles() == {42: 'OBS 30.0 - Escenas'}

    def test_running_programs(self, provider, mocker, services):
        mocker.patch('kenibox.shell.run', return_value=TASKLIST_ES_VERBOSE)
        assert provider.running_programs() == [
            ('obs64.exe (OBS 30.0 - Escenas)', ['obs64.exe', 'OBS 30.0 - Escenas']), ('cheat.exe', ['cheat.exe', '']),
            ('Service: Print Spooler', ['Spooler', 'Print Spooler'])]

    def test_screen_recording_on_localized_system(self, provider, config, mocker, services):
        mocker.patch('kenibox.shell.run', return_value=TASKLIST_ES_VERBOSE)
        mocker.patch('kenibox.shell.powershell_json', return_value=[])
        result = probes.check_screen_recording(provider, config)
        assert result == {'recording': True, 'applications': ['obs64.exe (OBS 30.0 - Escenas)']}

    def test_hidden_check_on_localized_system(self, provider, config, mocker):
        mocker.patch('kenibox.shell.run', return_value=TASKLIST_ES)
        table = [{'pid': 42, 'name': 'obs64.exe'}, {'pid': 77, 'name': 'cheat.exe'}, {'pid': 90, 'name': 'ghost.exe'}]
        assert [(f.name, f.extra['method']) for f in probes.hidden_processes(provider, table)] == [('ghost.exe', 'Not listed by tasklist')]

    def test_deleted_files_from_recycle_bin_and_event_log(self, provider, tmp_path, mocker):
        name = 'C:\\Users\\p\\Desktop\\old.jar'
        sid = tmp_path / '$Recycle.Bin' / 'S-1-5-21'
        sid.mkdir(parents=True)
        (sid / '$IXYZ.jar').write_bytes(struct.pack('<qqq', 2, 5, filetime(NOW.timestamp())) + struct.pack('<i', len(name) + 1)
                                        + (name + '\x00').encode('utf-16-le'))
        mocker.patch('kenibox.scanner.system_drives', return_value=[str(tmp_path)])
        mocker.patch('kenibox.shell.powershell_json', return_value=[
            {'TimeCreated': '/Date(1768474800000)/', 'Message': 'An attempt was made.\r\n\tObject Name:\t\tC:\\Users\\p\\cheat.jar\r\n\tAccesses:\tDELETE'},
            {'TimeCreated': None, 'Message': 'no object'}])
        found = provider.deleted_files(NOW - datetime.timedelta(minutes=60), 60)
        assert [(f.name, f.source) for f in found] == [('old.jar', 'Recycle Bin'), ('cheat.jar', 'Event Log'), ('Unknown file', 'Event Log')]
        assert found[1].path == 'C:\\Users\\p\\cheat.jar'
        assert found[1].get('operation') == 'delete'

    def test_usb_disconnects(self, provider, mocker):
        ps = mocker.patch('kenibox.shell.powershell_json', return_value=[{'Time': '/Date(1700000000000)/', 'Device': '  USB Mass Storage removed  '}])
        found = provider.usb_disconnects(30)
        assert [(f.name, f.timestamp) for f in found] == [('USB Mass Storage removed', from_epoch(1_700_000_000))]
        assert '.AddMinutes(-30)' in ps.call_args.args[0]

    def test_capture_devices(self, provider, mocker):
        mocker.patch('kenibox.shell.powershell_json', return_value=[{'Caption': 'Elgato Game Capture HD'}, {'Caption': None}])
        assert provider.capture_devices() == ['Elgato Game Capture HD']

    def test_memory_descriptor(self, provider, mocker):
        mocker.patch('kenibox.shell.powershell_json', return_value=[{'BaseAddress': '0x7FF6A000', 'MemorySize': 4096}])
        assert provider.memory_descriptor(12) == {'baseAddress': '0x7FF6A000', 'memorySize': 4096}

    def test_memory_descriptor_falls_back_to_psutil(self, provider, mocker):
        mocker.patch('kenibox.shell.powershell_json', return_value=[])
        fallback = mocker.patch.object(Provider, 'memory_descriptor', return_value={'baseAddress': None, 'memorySize': 1})
        assert provider.memory_descriptor(12) == {'baseAddress': None, 'memorySize': 1}
        fallback.assert_called_once_with(12)

    def test_system_modules(self, provider):
        assert provider.is_system_module('C:\\Windows\\System32\\ntdll.dll')
        assert provider.is_system_module('C:\\Program Files\\Java\\bin\\server\\jvm.dll')
        assert not provider.is_system_module('C:\\Users\\p\\hook.dll')


class TestMacProvider:
    @pytest.fixture
    def provider(self, config, home):
        return MacProvider(config, home)

    def test_deleted_files_from_trash(self, provider, home):
        touch(os.path.join(home, '.Trash', 'cheat.jar'), 'x', mtime=NOW - datetime.timedelta(minutes=10))
        touch(os.path.join(home, '.Trash', 'old.jar'), 'x', mtime=NOW - datetime.timedelta(days=2))
        found = provider.deleted_files(NOW - datetime.timedelta(minutes=60), 60)
        assert [(f.name, f.get('inRecycleBin')) for f in found] == [('cheat.jar', True)]

    def test_execution_history(self, provider, home, mocker):
        shared = os.path.join(home, 'Library', 'Application Support', 'com.apple.sharedfilelist')
        os.makedirs(shared)
        with open(os.path.join(shared, 'com.apple.LSSharedFileList.RecentApplications.sfl2'), 'wb') as f:
            f.write(plistlib.dumps({'RecentApplications': {'CustomListItems': [{'Name': 'Minecraft'}]}}))
        mocker.patch('kenibox.shell.run', return_value=("2026-01-15 11:30:00.123 Df launchd[1]: launched 'com.obsproject.obs-studio'\n"
                                                        "2026-01-15 08:00:00.000 Df launchd[1]: launched 'com.example.old'\n"))
        found = provider.execution_history(NOW - datetime.timedelta(hours=1), 1)
        assert [(f.name, f.source) for f in found] == [('Minecraft', 'Recent applications'), ('com.obsproject.obs-studio', 'launchd log')]
        assert found[1].timestamp == datetime.datetime(2026, 1, 15, 11, 30, 0)

    def test_usb_disconnects(self, provider, mocker):
        run = mocker.patch('kenibox.shell.run', return_value="2026-01-15 11:50:00.000 E kernel: USB device detached\nunrelated\n")
        found = provider.usb_disconnects(30)
        assert [f.timestamp for f in found] == [datetime.datetime(2026, 1, 15, 11, 50, 0)]
        assert run.call_args.args[0][-1] == '30m'

    def test_capture_grants(self, provider, home, mocker):
        touch(os.path.join(home, 'Library', 'Application Support', 'com.apple.TCC', 'TCC.db'))
        mocker.patch('kenibox.snapshot.query_copy', return_value=[('com.obsproject.obs-studio',), (None,), ('com.obsproject.obs-studio',)])
        assert provider.capture_grants() == ['com.obsproject.obs-studio']

    def test_stopped_security_services(self, provider, mocker):
        mocker.patch('kenibox.shell.run', return_value=("PID\tStatus\tLabel\n-\t0\tcom.apple.security.syspolicy\n"
                                                        "123\t0\tcom.apple.security.agent\n-\t0\tcom.example.foo\n"))
        assert [f.name for f in provider.services()['stoppedServices']] == ['com.apple.security.syspolicy']

    def test_folder_history(self, provider, home):
        touch(os.path.join(home, 'Games', '.DS_Store'))
        data = plistlib.dumps({'FXRecentFolders': [{'file-data': {'_CFURLString': 'file:///Users/p/Projects/'}}]})
        os.makedirs(os.path.join(home, 'Library', 'Preferences'))
        with open(os.path.join(home, 'Library', 'Preferences', 'com.apple.finder.plist'), 'wb') as f: f.write(data)
        assert [(f.name, f.source) for f in provider.folder_history()] == [('Games', '.DS_Store'), ('Projects', 'Finder recents')]

    def test_loaded_modules(self, provider, mocker):
        run = mocker.patch('kenibox.shell.run', return_value="p12\nn/usr/lib/libSystem.B.dylib\nn/tmp/inject.dylib\nn/Applications/x.app/x\n")
        assert provider.loaded_modules(12) == ['/usr/lib/libSystem.B.dylib', '/tmp/inject.dylib']
        assert run.call_args.args[0] == ['lsof', '-p', '12', '-Fn']

    def test_default_browser_hint(self, provider, home):
        assert provider.default_browser_hint() == ''
        folder = os.path.join(home, 'Library', 'Preferences', 'com.apple.LaunchServices')
        os.makedirs(folder)
        with open(os.path.join(folder, 'com.apple.launchservices.secure.plist'), 'wb') as f:
            f.write(plistlib.dumps({'LSHandlers': [{'LSHandlerURLScheme': 'http', 'LSHandlerRoleAll': 'com.google.chrome'}]}))
        assert provider.default_browser_hint() == 'com.google.chrome'


@pytest.mark.skipif(not sys.platform.startswith('linux'), reason="linux only")
def test_get_provider_on_linux(config):
    assert isinstance(get_provider(config), LinuxProvider)
