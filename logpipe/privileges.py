"""Switch the daemon to an unprivileged user before any sink is opened."""

import logging
import os
import pwd

from logpipe.errors import FatalError, ValidationError

logger = logging.getLogger(__name__)


def lookup_user(user: str) -> pwd.struct_passwd:
    try:
        return pwd.getpwnam(user)
    except KeyError:
        raise ValidationError(f"Unknown user: {user}") from None


def drop_privileges(user: str) -> None:
    """Set supplementary groups, gid and uid to those of *user*.

    Raises ValidationError if the user does not exist and FatalError if the
    switch is not permitted.
    """
    entry = lookup_user(user)
    if os.getuid() == entry.pw_uid and os.getgid() == entry.pw_gid:
        logger.debug("Already running as %s", user)
        return
    try:
        os.initgroups(user, entry.pw_gid)
        os.setgid(entry.pw_gid)
        os.setuid(entry.pw_uid)
    except OSError as exc:
        raise FatalError(f"Failed to switch to user {user}: {exc}") from exc
    logger.info("Running as %s (uid=%d, gid=%d)", user, entry.pw_uid, entry.pw_gid)
