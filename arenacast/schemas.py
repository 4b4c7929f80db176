"""
Event shapes for the real-time channel

Every frame is a JSON object {"type": <event name>, "data": <payload>}.
"""
from typing import Any, Dict, List, Literal, NotRequired, Optional, TypedDict, Union


# ---- Roles ----

ROLE_UNASSIGNED = "unassigned"
ROLE_MOBILE = "mobile"
ROLE_CONTROL_ROOM = "control-room"
ROLE_ARENA_DISPLAY = "arena-display"

ROLES = (ROLE_UNASSIGNED, ROLE_MOBILE, ROLE_CONTROL_ROOM, ROLE_ARENA_DISPLAY)

Role = Literal["unassigned", "mobile", "control-room", "arena-display"]


# ---- Settings ----

class Margins(TypedDict):
    left: float
    right: float
    top: float
    bottom: float


class Colors(TypedDict):
    background: str
    font: str


class DisplaySettings(TypedDict):
    margins: Margins
    colors: Colors


class MobileSettings(TypedDict):
    cameraFlip: bool
    demoMode: bool
    mainboardPopup: bool


class SettingsSnapshot(TypedDict):
    display: DisplaySettings
    mobile: MobileSettings
    sponsors: List[Any]


# ---- Inbound ----

class MsgBase(TypedDict):
    type: str


class MsgControlRoomConnected(MsgBase):
    type: Literal["control-room-connected"]


class MsgArenaDisplayConnected(MsgBase):
    type: Literal["arena-display-connected"]


class RegisterMobilePayload(TypedDict, total=False):
    name: str


class MsgRegisterMobile(MsgBase):
    type: Literal["register-mobile-device"]
    data: NotRequired[RegisterMobilePayload]


class MsgCameraAccessApproved(MsgBase):
    type: Literal["camera-access-approved"]


class MsgPreviewUpdateIn(MsgBase):
    type: Literal["preview-update", "camera-stream"]
    data: Any  # opaque frame, usually a data URI


class MsgGoLive(MsgBase):
    type: Literal["go-live"]
    data: str  # target session id


class MsgUpdateDisplaySettings(MsgBase):
    type: Literal["update-display-settings"]
    data: Dict[str, Any]  # partial DisplaySettings


class MsgUpdateMobileSettings(MsgBase):
    type: Literal["update-mobile-settings"]
    data: Dict[str, Any]  # partial MobileSettings


class MsgUpdateSponsors(MsgBase):
    type: Literal["update-sponsors"]
    data: List[Any]


class UploadSponsorPayload(TypedDict):
    fileName: str
    fileData: str  # base64, optionally as a data URI


class MsgUploadSponsor(MsgBase):
    type: Literal["upload-sponsor"]
    data: UploadSponsorPayload


WsInMsg = Union[
    MsgControlRoomConnected,
    MsgArenaDisplayConnected,
    MsgRegisterMobile,
    MsgCameraAccessApproved,
    MsgPreviewUpdateIn,
    MsgGoLive,
    MsgUpdateDisplaySettings,
    MsgUpdateMobileSettings,
    MsgUpdateSponsors,
    MsgUploadSponsor,
]


# ---- Outbound ----

class SessionSummary(TypedDict):
    id: str
    name: Optional[str]
    preview: Any
    live: bool


class DeviceConnected(TypedDict):
    id: str
    name: str


class PreviewUpdateOut(TypedDict):
    id: str
    preview: Any


class ArenaOverlay(TypedDict):
    sponsorLogo: str
    eventTitle: str


class ArenaDisplayUpdate(TypedDict):
    content: Any
    overlay: ArenaOverlay


class SponsorUploaded(TypedDict):
    url: str


class SponsorUploadFailed(TypedDict):
    error: str


# Outbound event names
SESSION_ASSIGNED = "session-assigned"
INITIAL_SETTINGS = "initial-settings"
DEVICE_LIST_UPDATE = "device-list-update"
DEVICE_CONNECTED = "device-connected"
DEVICE_DISCONNECTED = "device-disconnected"
PREVIEW_UPDATE = "preview-update"
ARENA_DISPLAY_UPDATE = "arena-display-update"
LIVE_DEVICE_CHANGED = "live-device-changed"
DISPLAY_SETTINGS_UPDATED = "display-settings-updated"
MOBILE_SETTINGS_UPDATED = "mobile-settings-updated"
SPONSORS_UPDATED = "update-sponsors"
START_PREVIEW = "start-preview"
SPONSOR_UPLOADED = "sponsor-uploaded"
SPONSOR_UPLOAD_FAILED = "sponsor-upload-failed"


def envelope(event: str, data: Any = None) -> dict:
    """Wrap a payload in the wire frame"""
    return {"type": event, "data": data}
