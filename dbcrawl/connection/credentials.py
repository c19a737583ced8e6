"""Database user credentials."""

from typing import Optional


class UserCredentials:
    """User name and password for a database connection.

    The password is never included in `repr` or `str`.
    """

    def __init__(self, user: Optional[str] = None, password: Optional[str] = None):
        self._user = user
        self._password = password

    @property
    def user(self) -> Optional[str]:
        return self._user

    @property
    def password(self) -> Optional[str]:
        return self._password

    @property
    def has_user(self) -> bool:
        return bool(self._user)

    @property
    def has_password(self) -> bool:
        return self._password is not None

    @property
    def is_reusable(self) -> bool:
        """Whether the credentials can open more than one connection."""
        return True

    def clear_password(self):
        """Forget the password. Reusable credentials keep it."""
        pass

    def __repr__(self) -> str:
        password = "*****" if self.has_password else "<none>"
        return f"{type(self).__name__}(user={self._user!r}, password={password})"

    __str__ = __repr__


class SingleUseUserCredentials(UserCredentials):
    """Credentials whose password is discarded after the first connection."""

    @property
    def is_reusable(self) -> bool:
        return False

    def clear_password(self):
        self._password = None
