"""Minecraft profile inspection: installed mods, client versions, launcher instances and the game log."""
import datetime
import json
import logging
import os

from . import parsers, scanner, shell
from .models import Finding, from_epoch, sort_by_time

log = logging.getLogger(__name__)

STANDARD_MAIN_CLASS = 'net.minecraft.client.main.Main'
MOD_SUFFIXES = ('.jar', '.zip')
KEY_FOLDERS = [('mods', 'Mods folder'), ('versions', 'Versions folder'), ('logs', 'Logs folder'), ('config', 'Config folder'),
               ('saves', 'Worlds folder'), ('resourcepacks', 'Resource packs folder'), ('shaderpacks', 'Shader packs folder'),
               ('screenshots', 'Screenshots folder')]
KEY_FILES = [('options.txt', 'Game options'), ('launcher_profiles.json', 'Launcher profiles'),
             ('launcher_accounts.json', 'Launcher accounts')]
INSTANCE_DIRS = [('AppData', 'Roaming', 'MultiMC', 'instances'), ('curseforge', 'minecraft', 'Instances'),
                 ('twitch', 'minecraft', 'Instances'), ('.techniclauncher', 'modpacks'),
                 ('Documents', 'Curse', 'Minecraft', 'Instances'), ('GDLauncher', 'instances')]


def find_profile(provider):
    return next((d for d in provider.minecraft_dirs() if os.path.isdir(d)), None)


def _files(directory, suffixes):
    """``(entry, stat)`` for the regular files in ``directory`` ending in ``suffixes``."""
    try: entries = list(os.scandir(directory))
    except OSError: return []
    found = []
    for entry in entries:
        if not entry.name.lower().endswith(suffixes): continue
        try:
            if not entry.is_file(): continue
            found.append((entry, entry.stat()))
        except OSError as e: log.debug("Skipping %s: %s", entry.path, e)
    return found


def instance_mod_dirs(home):
    """``mods`` folders of every launcher instance under ``home``."""
    found = []
    for parts in INSTANCE_DIRS:
        base = os.path.join(home, *parts)
        try: instances = sorted(e.path for e in os.scandir(base) if e.is_dir())
        except OSError: continue
        found += [os.path.join(i, 'mods') for i in instances if os.path.isdir(os.path.join(i, 'mods'))]
    return found


def check_mod_folders(provider, config):
    """Every mod jar of every profile found, plus client versions named like a cheat."""
    result = []
    for profile in provider.minecraft_dirs():
        if not os.path.isdir(profile): continue
        for entry, st in _files(os.path.join(profile, 'mods'), ('.jar',)):
            hits = parsers.classify_mod(entry.name, config.mod_keywords, config.mod_whitelist)
            modified = from_epoch(st.st_mtime)
            result.append(Finding(entry.name, 'Mods folder', modified, entry.path, {
                'size': st.st_size, 'modifiedTime': modified, 'suspicious': bool(hits),
                'reason': f"Suspicious keywords: {', '.join(hits)}" if hits else ''}))
        versions = os.path.join(profile, 'versions')
        try: names = sorted(e.name for e in os.scandir(versions) if e.is_dir())
        except OSError: names = []
        for name in names:
            hits = parsers.classify_mod(name, config.mod_keywords, config.mod_whitelist)
            jar = os.path.join(versions, name, name + '.jar')
            if not hits: continue
            try: st = os.stat(jar)
            except OSError: continue
            modified = from_epoch(st.st_mtime)
            result.append(Finding(f"{name}.jar (client version)", 'Versions folder', modified, jar, {
                'size': st.st_size, 'modifiedTime': modified, 'suspicious': True,
                'reason': f"Possibly hacked client version: {', '.join(hits)}"}))
    return result


def scan_minecraft_mods(provider, config, now=None):
    now = now or datetime.datetime.now()
    cutoff = now - datetime.timedelta(days=config.recent_days)
    result = {'suspiciousMods': [], 'recentlyModifiedMods': [], 'modFolders': []}
    profile = find_profile(provider)
    folders = [os.path.join(profile, 'mods'), os.path.join(profile, 'config')] if profile else []
    for folder in folders + instance_mod_dirs(provider.home):
        try: folder_modified = from_epoch(os.stat(folder).st_mtime)
        except OSError: continue
        result['modFolders'].append(Finding(os.path.basename(folder), 'Mod folder', folder_modified, folder, {'lastModified': folder_modified}))
        for entry, st in _files(folder, MOD_SUFFIXES):
            modified = from_epoch(st.st_mtime)
            extra = {'size': st.st_size, 'lastModified': modified}
            hits = parsers.classify_mod(entry.name, config.mod_keywords, config.mod_whitelist)
            if hits:
                result['suspiciousMods'].append(Finding(entry.name, 'Mod folder', modified, entry.path, dict(
                    extra, suspiciousKeywords=hits, reason=f"Suspicious keywords: {', '.join(hits)}")))
            if modified and modified >= cutoff:
                result['recentlyModifiedMods'].append(Finding(entry.name, 'Mod folder', modified, entry.path, extra))
    result['recentlyModifiedMods'] = sort_by_time(result['recentlyModifiedMods'])
    return result


def version_modifications(profile, config):
    """Version manifests that swap the game's entry point or pull in suspicious libraries."""
    result = []
    versions = os.path.join(profile, 'versions')
    try: names = sorted(e.name for e in os.scandir(versions) if e.is_dir())
    except OSError: return result
    for name in names:
        manifest = os.path.join(versions, name, name + '.json')
        if not os.path.isfile(manifest): continue
        try:
            with open(manifest, 'r', encoding='utf-8') as f: data = json.load(f)
        except (OSError, ValueError) as e:
            log.debug("Could not read %s: %s", manifest, e); continue
        if not isinstance(data, dict): continue
        main_class = data.get('mainClass')
        if isinstance(main_class, str) and STANDARD_MAIN_CLASS not in main_class:
            result.append(Finding(name, 'Modified version', None, manifest, {
                'type': 'Modified version', 'mainClass': main_class, 'reason': 'Non-standard mainClass'}))
        for library in data.get('libraries') or []:
            lib = library.get('name') if isinstance(library, dict) else None
            if isinstance(lib, str) and parsers.matches_any(lib, config.library_keywords):
                result.append(Finding(lib, 'Suspicious library', None, manifest, {
                    'type': 'Suspicious library', 'version': name, 'reason': 'Suspicious library name'}))
    return result


def _entry(path, kind, st, **extra):
    modified = from_epoch(st.st_mtime)
    return Finding(os.path.basename(path), kind, modified, path, dict(extra, lastModified=modified))


def inventory(profile, config):
    """Key folders and files of a profile, the installed mods and the relevant ``latest.log`` lines."""
    files = []
    for name, kind in KEY_FOLDERS:
        path = os.path.join(profile, name)
        try: st = os.stat(path)
        except OSError: continue
        if not os.path.isdir(path): continue
        files.append(_entry(path, kind, st, isDirectory=True))
        if name == 'mods':
            mods = sort_by_time([_entry(e.path, 'Mod', s, size=s.st_size) for e, s in _files(path, MOD_SUFFIXES)])
            files.append(Finding('Installed mods', 'Mod list', None, path, {'files': mods}))
        elif name == 'logs':
            latest = os.path.join(path, 'latest.log')
            text, _ = scanner.read_text(latest)
            if text is not None:
                st = os.stat(latest)
                files.append(_entry(latest, 'Log content', st, size=st.st_size,
                                    lines=parsers.relevant_log_lines(text, config.log_markers, config.log_lines)))
    for name, kind in KEY_FILES:
        path = os.path.join(profile, name)
        if not os.path.isfile(path): continue
        st = os.stat(path)
        files.append(_entry(path, kind, st, size=st.st_size, isDirectory=False))
    return files


def open_minecraft_files(provider, config, reveal=shell.reveal):
    profile = find_profile(provider)
    if not profile: return {'opened': False, 'error': 'Minecraft folder not found'}
    opened = True
    try: reveal(profile)
    except OSError as e:
        log.error("Could not open %s: %s", profile, e); opened = False
    return {'opened': opened, 'profile': profile, 'files': inventory(profile, config)}
