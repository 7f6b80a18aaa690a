"""Persisted host record.

The last known-good database host lives as a ``POSTGRES_HOST=value`` line in
one of the layered env files. After a verified recovery the line is rewritten
in place so the next process start begins with the right address.
"""
from __future__ import annotations

import logging
import os
import re
import tempfile
from datetime import datetime
from pathlib import Path

from dotenv import dotenv_values

logger = logging.getLogger(__name__)

DEFAULT_HOST_KEY = "POSTGRES_HOST"


class PersistedHostRecord:
    """Read and rewrite one ``KEY=value`` line of an env file."""

    def __init__(self, path: str | Path, key: str = DEFAULT_HOST_KEY):
        self.path = Path(path)
        self.key = key
        self._line_re = re.compile(rf"^\s*(?:export\s+)?{re.escape(key)}\s*=[ \t]*")
        self._comment_prefix = f"# Auto-updated {key} on "

    def read(self) -> str | None:
        """Return the current value of the key, or None if absent."""
        if not self.path.is_file():
            return None
        return dotenv_values(self.path).get(self.key)

    def render(self, content: str, value: str, now: datetime | None = None) -> str:
        """Return ``content`` with the key line set to ``value``.

        Every other line is kept verbatim. An existing auto-update comment is
        refreshed in place; otherwise one is inserted at the top of the file.
        If the key has no line yet, one is appended.
        """
        stamp = (now or datetime.now()).strftime("%Y-%m-%d %H:%M:%S")
        comment = f"{self._comment_prefix}{stamp}\n"
        out: list[str] = []
        stamped = False
        replaced = False

        for line in content.splitlines(keepends=True):
            if line.startswith(self._comment_prefix):
                if not stamped:
                    out.append(comment)
                    stamped = True
                continue
            match = self._line_re.match(line)
            if match:
                ending = line[len(line.rstrip("\r\n")):] or "\n"
                out.append(f"{match.group(0)}{value}{ending}")
                replaced = True
            else:
                out.append(line)

        if not stamped:
            out.insert(0, comment)
        if not replaced:
            if not out[-1].endswith("\n"):
                out[-1] += "\n"
            out.append(f"{self.key}={value}\n")

        return "".join(out)

    def write(self, value: str, now: datetime | None = None) -> bool:
        """Rewrite the key line with ``value``.

        Failures are logged and reported through the return value; they never
        raise, since the in-memory host is already correct.

        Returns:
            True if the file was rewritten
        """
        try:
            if not self.path.is_file():
                logger.warning(f"Host record {self.path} not found, skipping {self.key} update")
                return False

            content = self.path.read_text()
            updated = self.render(content, value, now=now)

            fd, tmp_name = tempfile.mkstemp(dir=str(self.path.parent), prefix=".hostrecord-")
            try:
                with os.fdopen(fd, "w") as f:
                    f.write(updated)
                os.chmod(tmp_name, self.path.stat().st_mode & 0o777)
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise

            logger.info(f"Updated {self.path} with {self.key}={value}")
            return True

        except OSError as e:
            logger.warning(f"Failed to update host record {self.path}: {e}")
            return False
