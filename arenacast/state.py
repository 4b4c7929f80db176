"""
In-memory relay state: connected sessions, the live pointer and settings

All three stores are owned by one RelayState instance that the event
router holds; nothing here is a module-level global.
"""
import copy
import itertools
import math
from numbers import Real
from typing import Any, Dict, List, Optional

from .errors import InvalidLiveTarget, UnknownSession
from .schemas import (
    ROLE_MOBILE, ROLE_UNASSIGNED, ROLES,
    DisplaySettings, MobileSettings, SettingsSnapshot,
)


# ============================================================
# SESSION REGISTRY
# ============================================================

class SessionRegistry:
    """
    Every connected endpoint keyed by its session id.

    Records are plain dicts: {id, role, name, preview}. `preview` stays
    None until a mobile session sends its first frame.
    """

    def __init__(self):
        self._sessions: Dict[str, dict] = {}
        self._phone_counter = itertools.count(1)

    def __contains__(self, session_id) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, session_id: str) -> dict:
        try:
            return self._sessions[session_id]
        except (KeyError, TypeError):
            raise UnknownSession(session_id) from None

    def register(self, session_id: str, role: str = ROLE_UNASSIGNED,
                 name: Optional[str] = None) -> dict:
        """
        Insert a session or overwrite role/name of an existing one.

        Mobile sessions without a usable name get "Phone N" from a
        per-process counter. The stored preview survives re-registration.
        """
        if role not in ROLES:
            raise ValueError(f"unknown role: {role!r}")

        if isinstance(name, str):
            name = name.strip() or None
        else:
            name = None

        session = self._sessions.get(session_id)
        if session is None:
            session = {"id": session_id, "role": role, "name": None, "preview": None}
            self._sessions[session_id] = session

        if role == ROLE_UNASSIGNED and session["role"] != ROLE_UNASSIGNED:
            # roles never go back to unassigned
            return session

        session["role"] = role
        if role == ROLE_MOBILE:
            session["name"] = name or session["name"] or f"Phone {next(self._phone_counter)}"
        elif name:
            session["name"] = name
        return session

    def record_preview(self, session_id: str, payload: Any) -> bool:
        """Store the latest frame of a mobile session; unknown ids are a no-op"""
        session = self._sessions.get(session_id)
        if session is None or session["role"] != ROLE_MOBILE:
            return False
        session["preview"] = payload
        return True

    def remove(self, session_id: str) -> Optional[dict]:
        return self._sessions.pop(session_id, None)

    def list(self, role: Optional[str] = None) -> List[dict]:
        """Snapshot copies of all sessions, optionally filtered by role"""
        return [
            dict(session) for session in self._sessions.values()
            if role is None or session["role"] == role
        ]

    def ids(self, role: Optional[str] = None) -> List[str]:
        return [
            sid for sid, session in self._sessions.items()
            if role is None or session["role"] == role
        ]


# ============================================================
# LIVE SELECTION
# ============================================================

class LiveSelection:
    """The single mobile session currently routed to the arena display"""

    def __init__(self, registry: SessionRegistry):
        self._registry = registry
        self._active: Optional[str] = None

    def current(self) -> Optional[str]:
        return self._active

    def set_live(self, session_id: str) -> dict:
        """
        Promote a session to live, implicitly demoting the previous one.

        Only mobile sessions with at least one recorded preview qualify;
        anything else raises and leaves the current selection untouched.
        """
        if not isinstance(session_id, str):
            raise UnknownSession(session_id)
        session = self._registry.get(session_id)
        if session["role"] != ROLE_MOBILE or session["preview"] is None:
            raise InvalidLiveTarget(session_id)
        self._active = session_id
        return session

    def is_live(self, session_id: str) -> bool:
        return self._active is not None and self._active == session_id

    def clear_if_matches(self, session_id: str) -> bool:
        if self.is_live(session_id):
            self._active = None
            return True
        return False


# ============================================================
# SETTINGS STORE
# ============================================================

DEFAULT_DISPLAY_SETTINGS: DisplaySettings = {
    "margins": {"left": 0, "right": 0, "top": 0, "bottom": 0},
    "colors": {"background": "#000000", "font": "#FFFFFF"},
}

DEFAULT_MOBILE_SETTINGS: MobileSettings = {
    "cameraFlip": False,
    "demoMode": False,
    "mainboardPopup": False,
}


def _is_number(value) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool) and math.isfinite(value)


# sub-object -> {field: validator}
DISPLAY_FIELDS = {
    "margins": {key: _is_number for key in ("left", "right", "top", "bottom")},
    "colors": {key: lambda v: isinstance(v, str) for key in ("background", "font")},
}

MOBILE_FIELDS = ("cameraFlip", "demoMode", "mainboardPopup")


class SettingsStore:
    """
    Process-wide display/mobile settings plus the sponsor list.

    Display settings merge one level deep: {"colors": {"font": "#fff"}}
    only touches colors.font. Unknown keys and badly typed values are
    dropped. Merge methods return the sanitized partial that was applied.
    """

    def __init__(self):
        self._display: DisplaySettings = copy.deepcopy(DEFAULT_DISPLAY_SETTINGS)
        self._mobile: MobileSettings = dict(DEFAULT_MOBILE_SETTINGS)
        self._sponsors: List[Any] = []

    def get_display_settings(self) -> DisplaySettings:
        return copy.deepcopy(self._display)

    def get_mobile_settings(self) -> MobileSettings:
        return dict(self._mobile)

    def get_sponsors(self) -> List[Any]:
        return copy.deepcopy(self._sponsors)

    def snapshot(self) -> SettingsSnapshot:
        return {
            "display": self.get_display_settings(),
            "mobile": self.get_mobile_settings(),
            "sponsors": self.get_sponsors(),
        }

    def merge_display_settings(self, partial: Any) -> dict:
        applied = {}
        if not isinstance(partial, dict):
            return applied

        for section, fields in DISPLAY_FIELDS.items():
            values = partial.get(section)
            if not isinstance(values, dict):
                continue
            accepted = {
                key: value for key, value in values.items()
                if key in fields and fields[key](value)
            }
            if accepted:
                self._display[section].update(accepted)
                applied[section] = accepted
        return applied

    def merge_mobile_settings(self, partial: Any) -> dict:
        if not isinstance(partial, dict):
            return {}
        applied = {
            key: partial[key] for key in MOBILE_FIELDS
            if isinstance(partial.get(key), bool)
        }
        self._mobile.update(applied)
        return applied

    def set_sponsors(self, sponsors: Any) -> Optional[List[Any]]:
        """Replace the sponsor list; anything but a list is ignored"""
        if not isinstance(sponsors, list):
            return None
        self._sponsors = copy.deepcopy(sponsors)
        return self.get_sponsors()


class RelayState:
    """Single owner of the three stores"""

    def __init__(self):
        self.sessions = SessionRegistry()
        self.live = LiveSelection(self.sessions)
        self.settings = SettingsStore()
