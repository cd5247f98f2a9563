"""Read-only queries against SQLite files another program keeps open.

Browsers hold an exclusive lock on their history while running, so the file is
copied to a temporary location, queried there and the copy removed again.
"""
import logging
import os
import shutil
import sqlite3
import tempfile

log = logging.getLogger(__name__)


def query_copy(db_path, sql, params=()):
    """Rows of ``sql`` run against a private copy of ``db_path``; ``[]`` on any failure."""
    fd, tmp = tempfile.mkstemp(prefix="kenibox_", suffix=".db")
    os.close(fd)
    try:
        shutil.copy2(db_path, tmp)
        for suffix in ("-wal", "-shm"):
            if os.path.exists(db_path + suffix): shutil.copy2(db_path + suffix, tmp + suffix)
        con = sqlite3.connect(tmp)
        try: return con.execute(sql, params).fetchall()
        finally: con.close()
    except (OSError, sqlite3.Error) as e:
        log.debug("Could not query %s: %s", db_path, e)
        return []
    finally:
        for path in (tmp, tmp + "-wal", tmp + "-shm"):
            try: os.remove(path)
            except OSError: pass
