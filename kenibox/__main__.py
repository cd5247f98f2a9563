import argparse
import ctypes
import datetime
import json
import logging
import os
import sys
import traceback

from . import __version__
from .config import load_config, load_settings
from .errors import ConfigError
from .service import PROBES, ProbeService

log = logging.getLogger("kenibox")


def exception_logger(exc_type, exc_value, exc_traceback):
    try:
        base = "crash.log"; filename = base; counter = 1
        while os.path.exists(filename): filename = f"crash({counter}).log"; counter += 1
        with open(filename, "w", encoding="utf-8") as f:
            f.write("Timestamp: " + datetime.datetime.now(datetime.timezone.utc).isoformat() + "\n\n")
            traceback.print_exception(exc_type, exc_value, exc_traceback, file=f)
    except OSError: pass
    sys.__excepthook__(exc_type, exc_value, exc_traceback)


def is_admin():
    try: return ctypes.windll.shell32.IsUserAnAdmin() != 0 if os.name == 'nt' else os.geteuid() == 0
    except (AttributeError, OSError): return False


def build_parser():
    parser = argparse.ArgumentParser(prog="kenibox", description="Screenshare checker for Minecraft cheats.")
    parser.add_argument("--probe", action="append", metavar="NAME", help="run a check without the GUI (repeatable)")
    parser.add_argument("--arg", metavar="VALUE", help="minutes, hours or path passed to the checks")
    parser.add_argument("--export", metavar="FILE", help="write the results as an export document")
    parser.add_argument("--list", action="store_true", help="list the available checks")
    parser.add_argument("--verbose", "-v", action="store_true", help="debug logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def setup_logging(verbose=False):
    debug = verbose or os.environ.get("KENIBOX_DEBUG") == "1"
    logging.basicConfig(level=logging.DEBUG if debug else logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def run_headless(service, names, arg=None, export=None):
    results = {}
    for name in names: results[name] = service.invoke(name, arg)
    if export: service.session.export(export)
    else: print(json.dumps(results, indent=2, ensure_ascii=False))
    return 1 if any(isinstance(r, dict) and set(r) == {'error'} for r in results.values()) else 0


def main(argv=None):
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)
    if args.list:
        for name in PROBES: print(name)
        return 0
    if args.probe:
        try: settings = load_settings()
        except ConfigError as e:
            log.error(e.message); return 2
        service = ProbeService(config=load_config(settings))
        return run_headless(service, args.probe, args.arg, args.export)
    sys.excepthook = exception_logger
    try: settings = load_settings()
    except ConfigError as e:
        log.warning("%s, using defaults", e.message); settings = {}
    from .gui import KeniboxApp
    from tkinter import messagebox
    if not is_admin(): messagebox.showwarning("Permissions", "Running without admin privileges may limit access to system processes and logs.")
    app = KeniboxApp(ProbeService(config=load_config(settings)), settings)
    app.mainloop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
