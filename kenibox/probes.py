"""The probes behind each button: gather through the provider, filter, sort, dedupe.

Every probe takes the active provider and config first and at most one
primitive argument after that. None of them raise for OS or file failures;
whatever could be collected is returned.
"""
import datetime
import logging
import os
import re
from dataclasses import replace

from . import browsers, minecraft, parsers, scanner, shell
from .errors import ProbeError
from .models import Finding, dedupe, from_epoch, sort_by_time
from .providers.base import jar_finding, process_key

log = logging.getLogger(__name__)

WEBCAM_RE = re.compile(r'webcam|camera|cam$', re.IGNORECASE)


def _since(now, **delta):
    return (now or datetime.datetime.now()) - datetime.timedelta(**delta)


def find_jar_files(provider, config):
    return scanner.find_jar_files(None, config)


def check_extension_changes(provider, config):
    return scanner.check_extension_changes(scanner.default_extension_dirs(provider.home), config)


def get_deleted_files(provider, config, minutes=60, now=None):
    return sort_by_time(provider.deleted_files(_since(now, minutes=minutes), minutes))


def java_log_jars(provider, since):
    """JAR paths mentioned in Java and Minecraft logs written since ``since``."""
    result = []
    for directory in provider.java_log_dirs():
        try: entries = [e for e in os.scandir(directory) if e.name.endswith('.log') or e.name.startswith('hs_err')]
        except OSError: continue
        for entry in entries:
            try: modified = from_epoch(entry.stat().st_mtime)
            except OSError: continue
            if not modified or modified < since: continue
            text, _ = scanner.read_text(entry.path)
            for ref in parsers.find_jar_references(text):
                result.append(jar_finding(ref, f"Java log ({entry.name})", modified))
    return result


def _with_size(finding):
    try: size = os.path.getsize(finding.path) if finding.path else 0
    except OSError: size = 0
    return replace(finding, extra=dict(finding.extra, size=size))


def get_executed_jars(provider, config, hours=4, now=None):
    since = _since(now, hours=hours)
    found = list(provider.registry_jars(since))
    for item in sort_by_time(provider.execution_history(since, hours)):
        command = item.get('command') or ''
        if '.jar' not in command.lower() and not item.name.lower().endswith('.jar'): continue
        refs = parsers.find_jar_references(command) or ([item.name] if item.name.lower().endswith('.jar') else [])
        jar = parsers.extract_jar_path(command) or (refs[0] if refs else '')
        if not jar: continue
        found.append(jar_finding(jar, item.source, item.timestamp))
    found += java_log_jars(provider, since)
    unique = dedupe(found, key=lambda f: parsers.path_key(f.path or f.name))
    return sort_by_time([_with_size(f) for f in unique])


def check_usb_disconnection(provider, config):
    details = sort_by_time(provider.usb_disconnects(config.usb_window_minutes))
    return {'disconnected': bool(details), 'details': details}


def check_screen_recording(provider, config):
    applications = []
    recording = False
    false_positives = config.recording_false_positives
    for label, texts in provider.running_programs():
        texts = [t for t in texts if t]
        if any(parsers.matches_any(t, false_positives) for t in texts): continue
        if any(parsers.matches_any(t, config.recording_apps) for t in texts):
            recording = True
            if label not in applications: applications.append(label)
    for device in provider.capture_devices():
        if 'capture' not in device.lower() or parsers.matches_any(device, false_positives): continue
        applications.append(f"Capture device: {device}")
        if not WEBCAM_RE.search(device): recording = True
    for client in provider.capture_grants():
        if not parsers.matches_any(client, false_positives): applications.append(f"{client} (screen capture permission)")
    for command in provider.grabber_processes():
        recording = True
        applications.append(f"Screen grabber: {command}")
    return {'recording': recording, 'applications': applications}


def detect_browsers(provider, config):
    return browsers.detect_browsers(provider)


def open_browser_history(provider, config):
    return browsers.open_browser_history(provider)


def detect_suspicious_processes(provider, config):
    """Processes whose name or window title carries a cheat keyword."""
    titles = provider.window_titles()
    own = os.getpid()
    result = []
    for row in provider.process_table():
        if row['pid'] == own: continue
        title = titles.get(row['pid'], '')
        hits = parsers.match_keywords(f"{row['name']} {title}", config.cheat_process_keywords)
        if hits:
            result.append(Finding(row['name'], 'Process list', row['started'], row['exe'] or None, {
                'pid': row['pid'], 'windowTitle': title, 'suspiciousKeywords': hits}))
    return result


def detect_minecraft_cheats(provider, config):
    history_found, visits = browsers.scan_history(provider, config)
    return {'sitesDetected': visits, 'historyFound': history_found, 'modFiles': minecraft.check_mod_folders(provider, config),
            'suspiciousProcesses': detect_suspicious_processes(provider, config)}


def detect_stopped_services(provider, config):
    return provider.services()


def get_folder_history(provider, config):
    history = sort_by_time(provider.folder_history())
    return dedupe(history, key=lambda f: parsers.path_key(f.path or f.name))


def get_execution_history(provider, config, hours=4, now=None):
    history = sort_by_time(provider.execution_history(_since(now, hours=hours), hours))
    return dedupe(history, key=lambda f: f.name.lower())


def open_minecraft_files(provider, config):
    return minecraft.open_minecraft_files(provider, config)


def get_command_history(provider, config):
    return sort_by_time(provider.command_history())


def scan_minecraft_mods(provider, config):
    return minecraft.scan_minecraft_mods(provider, config)


def java_processes(table):
    return [row for row in table if 'java' in row['name'].lower() or 'minecraft' in row['name'].lower()]


def injected_modules(provider, table):
    """Modules outside the system libraries loaded into Java processes."""
    result = []
    for row in java_processes(table):
        for path in provider.loaded_modules(row['pid']):
            if provider.is_system_module(path): continue
            name = parsers.base_name(path)
            company, description = provider.module_details(path)
            result.append(Finding(name, 'Loaded modules', None, path, {
                'processName': row['name'], 'pid': row['pid'], 'moduleName': name, 'filePath': path,
                'company': company or 'Unknown', 'description': description or 'Library loaded in a Java process'}))
    return result


def hidden_processes(provider, table):
    """Process names seen by only one of psutil and the platform's own listing tool."""
    alternate = provider.alternate_process_names()
    if not alternate:
        log.warning("%s returned no processes, skipping the hidden process check", provider.process_tool)
        return []
    primary = {row['name'] for row in table if row['name']}
    primary_keys = {process_key(n) for n in primary}
    alternate_keys = {process_key(n) for n in alternate}
    result = []
    for names, others, method in ((primary, alternate_keys, f"Not listed by {provider.process_tool}"),
                                  (alternate, primary_keys, "Not listed by psutil")):
        seen = {process_key(provider.process_tool)}
        for name in sorted(names):
            key = process_key(name)
            if key in others or key in seen: continue
            seen.add(key)
            result.append(Finding(name, 'Process comparison', None, None, {'method': method, 'reason': 'Possible hidden process'}))
    return result


def analyze_processes(provider, config):
    table = provider.process_table()
    own = os.getpid()
    suspicious = []
    for row in table:
        if row['pid'] == own: continue
        fields = [row['name'], row['exe'], row['description'], row['cmdline']] if provider.detailed_process_info else [row['name']]
        flagged = any(parsers.match_keywords(text, config.analysis_process_keywords) for text in fields)
        opaque = (provider.detailed_process_info and row['pid'] not in (0, 4)
                  and not (row['exe'] or row['company'] or row['description']))
        if not (flagged or opaque): continue
        suspicious.append(Finding(row['name'], 'Process list', row['started'], row['exe'] or None, {
            'pid': row['pid'], 'company': row['company'] or 'Unknown', 'startTime': row['started'],
            'commandLine': row['cmdline'] or 'Unknown', 'reason': 'Suspicious name or path' if flagged else 'Limited information'}))
    return {'suspiciousProcesses': suspicious, 'injections': injected_modules(provider, table),
            'hiddenProcesses': hidden_processes(provider, table)}


def detect_injections(provider, config):
    table = provider.process_table()
    memory = []
    for row in java_processes(table):
        descriptor = provider.memory_descriptor(row['pid'])
        memory.append(Finding(row['name'], 'Memory', None, row['exe'] or None, dict(
            descriptor, processName=row['name'], pid=row['pid'], analyzed=True, findings='Basic analysis completed')))
    profile = minecraft.find_profile(provider)
    return {'injectedDLLs': injected_modules(provider, table),
            'suspiciousModifications': minecraft.version_modifications(profile, config) if profile else [],
            'memoryScans': memory}


def open_file_location(provider, config, path=None):
    if not path or not os.path.exists(path): raise ProbeError(f"Path does not exist: {path}")
    shell.reveal(path, select=os.path.isfile(path))
    return {'success': True, 'path': path}
