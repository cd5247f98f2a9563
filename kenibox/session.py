"""The results of one screenshare session and the document they export to."""
import datetime
import json
import logging
import platform
import sys
import threading

from . import __version__

log = logging.getLogger(__name__)


def user_agent():
    return f"KeniBox/{__version__} Python/{platform.python_version()} ({platform.system()} {platform.release()})"


class Session:
    """Last result of every probe run since the session was started or cleared."""

    def __init__(self):
        self.started = datetime.datetime.now()
        self.results = {}
        self._lock = threading.Lock()

    def record(self, name, result):
        with self._lock: self.results[name] = result

    def clear(self):
        with self._lock: self.results.clear()

    def __len__(self):
        return len(self.results)

    def export_document(self, now=None):
        now = now or datetime.datetime.now()
        with self._lock: results = dict(self.results)
        return {'timestamp': now.isoformat(timespec='seconds'),
                'system': {'platform': sys.platform, 'userAgent': user_agent()},
                'results': results}

    def export(self, path):
        document = self.export_document()
        with open(path, "w", encoding="utf-8") as f: json.dump(document, f, indent=2, ensure_ascii=False)
        log.info("Exported %d results to %s", len(document['results']), path)
        return path
