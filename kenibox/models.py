import datetime
import types
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional


@dataclass(frozen=True)
class Finding:
    """One piece of evidence produced by a probe.

    ``extra`` carries the probe specific fields (size, startTime, pid, ...) and
    is flattened into the record when it is serialized.
    """

    name: str
    source: str
    timestamp: Optional[datetime.datetime] = None
    path: Optional[str] = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, 'extra', types.MappingProxyType(dict(self.extra)))

    def get(self, key, default=None):
        if key in ('name', 'source', 'timestamp', 'path'): return getattr(self, key)
        return self.extra.get(key, default)

    def to_dict(self):
        data = {'name': self.name, 'source': self.source, 'timestamp': format_time(self.timestamp)}
        if self.path is not None: data['path'] = self.path
        for key, value in self.extra.items(): data[key] = to_jsonable(value)
        return data


def format_time(value):
    if value is None: return None
    if isinstance(value, datetime.datetime): return value.isoformat(timespec='seconds')
    return str(value)


def from_epoch(seconds):
    try: return datetime.datetime.fromtimestamp(seconds)
    except (OverflowError, OSError, ValueError, TypeError): return None


def _sort_value(finding):
    ts = finding.timestamp
    if ts is None: return (0, 0.0)
    try: return (1, ts.timestamp())
    except (OverflowError, OSError, ValueError): return (0, 0.0)


def sort_by_time(findings):
    """Newest first. Equal timestamps keep their input order; unknown times go last."""
    return sorted(findings, key=_sort_value, reverse=True)


def dedupe(findings, key):
    seen = set(); unique = []
    for finding in findings:
        k = key(finding)
        if k in seen: continue
        seen.add(k); unique.append(finding)
    return unique


def to_jsonable(value):
    if isinstance(value, Finding): return value.to_dict()
    if isinstance(value, datetime.datetime): return format_time(value)
    if isinstance(value, dict): return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)): return [to_jsonable(v) for v in value]
    return value


def result_rows(result):
    """Split a JSON-ready probe result into ``(summary, rows)`` for display.

    ``rows`` are ``(section, record)`` pairs, one per record in any list of the
    result; ``summary`` holds the scalar fields of a composite result.
    """
    if isinstance(result, list): return {}, [('', r if isinstance(r, dict) else {'name': r}) for r in result]
    if not isinstance(result, dict): return {'result': result}, []
    summary = {}; rows = []
    for key, value in result.items():
        if isinstance(value, list): rows += [(key, r if isinstance(r, dict) else {'name': r}) for r in value]
        else: summary[key] = value
    return summary, rows
