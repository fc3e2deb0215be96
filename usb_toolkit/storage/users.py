"""The user who invoked the toolkit through sudo."""

from __future__ import annotations

import os
import pwd
from dataclasses import dataclass

from usb_toolkit.logging import LoggerFactory


log = LoggerFactory.for_system()


@dataclass(frozen=True)
class InvokingUser:
    name: str
    uid: int
    gid: int
    home: str


def invoking_user() -> InvokingUser:
    """``SUDO_USER`` if set, else the login name, else the effective user.

    Falls back to uid/gid 1000 when the name has no passwd entry.
    """
    name = os.environ.get("SUDO_USER")
    if not name:
        try:
            name = os.getlogin()
        except OSError:
            name = pwd.getpwuid(os.geteuid()).pw_name
    try:
        entry = pwd.getpwnam(name)
    except KeyError:
        log.debug(f"No passwd entry for {name}; using 1000:1000")
        return InvokingUser(name, 1000, 1000, f"/home/{name}")
    return InvokingUser(name, entry.pw_uid, entry.pw_gid, entry.pw_dir)


def hand_over(path: str, user: InvokingUser | None = None) -> None:
    """Give ``path`` to the invoking user; failures are logged only."""
    user = user or invoking_user()
    try:
        os.chown(path, user.uid, user.gid)
    except OSError as error:
        log.debug(f"chown {path} to {user.name} failed: {error}")
