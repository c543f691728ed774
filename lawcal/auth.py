"""Admin/visitor gate backed by the signed session cookie.

There is a single shared admin secret and no user table. The gate is the one
place that reads or writes the cookie; everything else asks it for an
``AuthStatus`` and may subscribe to login/logout changes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, MutableMapping, Optional

from flask import session
from flask.sessions import SessionMixin

from lawcal.security import check_admin_password

AUTH_COOKIE = "law_calendar_auth"
AUTH_KEY = "auth"
ADMIN_VALUE = "admin"

logger = logging.getLogger("lawcal.auth")


@dataclass(frozen=True)
class AuthStatus:
    is_logged_in: bool
    user_type: str

    def as_dict(self) -> dict:
        return {"isLoggedIn": self.is_logged_in, "userType": self.user_type}


VISITOR = AuthStatus(is_logged_in=False, user_type="visitor")
ADMIN = AuthStatus(is_logged_in=True, user_type="admin")

Listener = Callable[[AuthStatus], None]


class AuthGate:
    def __init__(self, password_source: Callable[[], str]) -> None:
        self._password_source = password_source
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, status: AuthStatus) -> None:
        for listener in list(self._listeners):
            listener(status)

    def login(self, password: str, store: Optional[MutableMapping] = None) -> bool:
        store = session if store is None else store
        if not check_admin_password(password, self._password_source() or ""):
            logger.info("Rejected admin login attempt")
            return False

        store.clear()
        store[AUTH_KEY] = ADMIN_VALUE
        if isinstance(store, SessionMixin):
            store.permanent = True
        self._notify(ADMIN)
        return True

    def logout(self, store: Optional[MutableMapping] = None) -> None:
        store = session if store is None else store
        store.clear()
        self._notify(VISITOR)

    def get_auth_status(self, store: Optional[MutableMapping] = None) -> AuthStatus:
        store = session if store is None else store
        if store.get(AUTH_KEY) == ADMIN_VALUE:
            return ADMIN
        return VISITOR
