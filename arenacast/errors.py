"""
Relay error taxonomy

None of these are fatal: the router logs and drops the offending event,
the HTTP layer turns them into error responses.
"""


class RelayError(Exception):
    """Base class for everything the relay raises on purpose"""


class UnknownSession(RelayError):
    """
    An event referenced a session id that is not registered
    (or not registered with the role the event needs).
    """

    def __init__(self, session_id):
        super().__init__(f"unknown session: {session_id!r}")
        self.session_id = session_id


class InvalidLiveTarget(RelayError):
    """Go-live was requested for a session that has no preview yet"""

    def __init__(self, session_id):
        super().__init__(f"session {session_id!r} cannot go live")
        self.session_id = session_id


class AssetWriteFailure(RelayError):
    """A sponsor upload could not be decoded or written to disk"""


class QRGenerationFailure(RelayError):
    """The QR code image could not be rendered"""
