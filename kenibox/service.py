"""One call per probe, as the GUI and the command line invoke them.

``ProbeService.invoke`` is the outermost catch: whatever goes wrong inside a
probe comes back as ``{"error": message}`` instead of an exception.
"""
import logging

from . import probes
from .config import default_config
from .errors import ProbeError, UnknownProbeError
from .models import to_jsonable
from .providers import get_provider
from .session import Session

log = logging.getLogger(__name__)

# name -> (function, keyword argument, converter)
PROBES = {
    'find_jar_files': (probes.find_jar_files, None, None),
    'check_extension_changes': (probes.check_extension_changes, None, None),
    'get_deleted_files': (probes.get_deleted_files, 'minutes', int),
    'get_executed_jars': (probes.get_executed_jars, 'hours', int),
    'check_usb_disconnection': (probes.check_usb_disconnection, None, None),
    'check_screen_recording': (probes.check_screen_recording, None, None),
    'detect_browsers': (probes.detect_browsers, None, None),
    'open_browser_history': (probes.open_browser_history, None, None),
    'detect_minecraft_cheats': (probes.detect_minecraft_cheats, None, None),
    'detect_stopped_services': (probes.detect_stopped_services, None, None),
    'get_folder_history': (probes.get_folder_history, None, None),
    'get_execution_history': (probes.get_execution_history, 'hours', int),
    'open_minecraft_files': (probes.open_minecraft_files, None, None),
    'get_command_history': (probes.get_command_history, None, None),
    'analyze_processes': (probes.analyze_processes, None, None),
    'scan_minecraft_mods': (probes.scan_minecraft_mods, None, None),
    'detect_injections': (probes.detect_injections, None, None),
    'open_file_location': (probes.open_file_location, 'path', str),
}


class ProbeService:
    def __init__(self, provider=None, config=None, session=None):
        self.config = config or default_config()
        self.provider = provider or get_provider(self.config)
        self.session = session if session is not None else Session()

    @staticmethod
    def names():
        return list(PROBES)

    def _call(self, name, arg):
        if name not in PROBES: raise UnknownProbeError(name)
        func, param, convert = PROBES[name]
        if param is None or arg is None or arg == '':
            if arg not in (None, '') and param is None: log.debug("%s takes no argument, ignoring %r", name, arg)
            return func(self.provider, self.config)
        try: value = convert(arg)
        except (TypeError, ValueError) as e:
            raise ProbeError(f"Invalid {param} for {name}: {arg!r}") from e
        return func(self.provider, self.config, **{param: value})

    def invoke(self, name, arg=None):
        """Run probe ``name``; the JSON-ready result, or ``{'error': message}``."""
        log.info("Running %s", name)
        try: result = to_jsonable(self._call(name, arg))
        except Exception as e:
            log.exception("Probe %s failed", name)
            return {'error': str(e)}
        self.session.record(name, result)
        return result
