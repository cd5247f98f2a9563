"""Installed browsers, their history pages and cheat-site visits in their history."""
import logging
import os
import webbrowser

from . import parsers, snapshot
from .models import Finding, sort_by_time

log = logging.getLogger(__name__)

# Order matters: the first needle found in the OS default-handler hint wins.
HINT_NAMES = [('operagx', 'Opera GX'), ('opera gx', 'Opera GX'), ('opera', 'Opera'), ('chromium', 'Chromium'),
              ('chrome', 'Google Chrome'), ('firefox', 'Mozilla Firefox'), ('edge', 'Microsoft Edge'), ('brave', 'Brave'),
              ('vivaldi', 'Vivaldi'), ('safari', 'Safari'), ('yandex', 'Yandex Browser'), ('ie.http', 'Internet Explorer')]

HISTORY_URLS = [('opera', 'opera://history'), ('chrom', 'chrome://history'), ('firefox', 'about:history'),
                ('edge', 'edge://history'), ('brave', 'brave://history'), ('vivaldi', 'vivaldi://history'),
                ('yandex', 'browser://history'), ('safari', 'safari://history')]

HISTORY_QUERIES = {
    'chromium': ("SELECT url, title, last_visit_time FROM urls WHERE {where} ORDER BY last_visit_time DESC LIMIT 100",
                 'url', parsers.webkit_to_datetime),
    'firefox': ("SELECT url, title, last_visit_date FROM moz_places WHERE {where} ORDER BY last_visit_date DESC LIMIT 100",
                'url', parsers.prtime_to_datetime),
    'safari': ("SELECT i.url, v.title, v.visit_time FROM history_items i JOIN history_visits v ON v.history_item = i.id "
               "WHERE {where} ORDER BY v.visit_time DESC LIMIT 100", 'i.url', parsers.mac_absolute_to_datetime),
}


def browser_name_from_hint(hint):
    low = (hint or '').lower()
    for needle, name in HINT_NAMES:
        if needle in low: return name
    return ''


def detect_browsers(provider):
    """``[{name, path, default}]`` for every browser found on disk."""
    default = browser_name_from_hint(provider.default_browser_hint())
    browsers = []
    for name, path in provider.browser_candidates():
        if not os.path.exists(path) or any(b['name'] == name for b in browsers): continue
        browsers.append({'name': name, 'path': path, 'default': bool(default) and name == default})
    if browsers and not any(b['default'] for b in browsers): browsers[0]['default'] = True
    return browsers


def history_url(name):
    low = name.lower()
    return next((url for needle, url in HISTORY_URLS if needle in low), None)


def open_history_page(provider, browser):
    url = history_url(browser['name'])
    if not url: return {'success': False, 'message': f"No history page known for {browser['name']}"}
    try: opened = provider.launch_url(browser, url)
    except (OSError, webbrowser.Error) as e:
        log.warning("Could not open %s in %s: %s", url, browser['name'], e); opened = False
    if opened: return {'success': True, 'message': f"Opened {browser['name']} history", 'url': url}
    return {'success': False, 'message': f"Could not open {browser['name']}", 'url': url}


def open_browser_history(provider):
    """Open the default browser's history page, falling back through the others."""
    browsers = detect_browsers(provider)
    if not browsers: return {'success': False, 'browserFound': False, 'details': [], 'message': 'No installed browsers found'}
    ordered = sorted(browsers, key=lambda b: not b['default'])
    result = {'success': False, 'browserFound': True, 'details': []}
    for browser in ordered:
        outcome = open_history_page(provider, browser)
        result['details'].append({'browser': browser['name'], 'result': outcome})
        if outcome['success']:
            result['success'] = True; break
    return result


def _profiles(root):
    try: return sorted((e.name, e.path) for e in os.scandir(root) if e.is_dir())
    except OSError: return []


def history_databases(provider):
    """``(browser, engine, profile, path)`` for every history database on disk."""
    found = []
    for browser, engine, root in provider.browser_profile_roots():
        if engine == 'safari':
            if os.path.isfile(root): found.append((browser, engine, 'Default', root))
            continue
        if engine == 'chromium' and os.path.isfile(os.path.join(root, 'History')):
            found.append((browser, engine, 'Default', os.path.join(root, 'History')))
            continue
        for name, path in _profiles(root):
            if engine == 'chromium' and name != 'Default' and not name.startswith('Profile'): continue
            db = os.path.join(path, 'History' if engine == 'chromium' else 'places.sqlite')
            if os.path.isfile(db): found.append((browser, engine, name, db))
    return found


def scan_history(provider, config):
    """``(history_found, visits)``: whether any history database exists, and cheat-domain visits in them."""
    databases = history_databases(provider)
    domains = list(config.cheat_domains)
    visits = []
    if not domains: return bool(databases), visits
    params = [f"%{d['domain']}%" for d in domains]
    for browser, engine, profile, db in databases:
        sql, column, convert = HISTORY_QUERIES[engine]
        where = ' OR '.join([f'{column} LIKE ?'] * len(domains))
        for url, title, stamp in snapshot.query_copy(db, sql.format(where=where), params):
            low = (url or '').lower()
            match = next((d for d in domains if d['domain'].lower() in low), {})
            when = convert(stamp)
            visits.append(Finding(url, browser, when, None, {
                'url': url, 'title': title or '', 'visitTime': when, 'browser': browser, 'profile': profile,
                'severity': match.get('severity', 'medium'), 'cheatName': match.get('name', 'Unknown cheat')}))
    log.debug("Checked %d history databases, %d cheat visits", len(databases), len(visits))
    return bool(databases), sort_by_time(visits)
