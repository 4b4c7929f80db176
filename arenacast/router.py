"""
Event router: turns inbound channel events into state changes and
role-scoped broadcasts

One asyncio.Lock serializes event handling, so all broadcasts caused by
one event go out before the next event touches the state.
"""
import asyncio
import functools
import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .errors import AssetWriteFailure, RelayError, UnknownSession
from .schemas import (
    ROLE_ARENA_DISPLAY, ROLE_CONTROL_ROOM, ROLE_MOBILE,
    ARENA_DISPLAY_UPDATE, DEVICE_CONNECTED, DEVICE_DISCONNECTED,
    DEVICE_LIST_UPDATE, DISPLAY_SETTINGS_UPDATED, INITIAL_SETTINGS,
    LIVE_DEVICE_CHANGED, MOBILE_SETTINGS_UPDATED, PREVIEW_UPDATE,
    SESSION_ASSIGNED, SPONSOR_UPLOAD_FAILED, SPONSOR_UPLOADED,
    SPONSORS_UPDATED, START_PREVIEW,
    ArenaDisplayUpdate, ArenaOverlay, RegisterMobilePayload, SessionSummary,
    UploadSponsorPayload, WsInMsg, envelope,
)
from .state import RelayState
from .utils import generate_session_id, save_upload

logger = logging.getLogger("arenacast")

DEFAULT_OVERLAY: ArenaOverlay = {
    "sponsorLogo": "/static/images/sponsor-logo.png",
    "eventTitle": "RENO RODEO",
}


class EventRouter:
    """
    Owns the relay state and the open connections.

    A connection is anything with awaitable `send_str(text)` and `close()`,
    which in production is an aiohttp WebSocketResponse. A connection that
    does not accept a frame within `send_timeout` seconds is closed so it
    cannot hold up the other sessions.
    """

    def __init__(self, state: Optional[RelayState] = None, *,
                 uploads_dir: Optional[Path] = None,
                 max_upload_bytes: Optional[int] = None,
                 send_timeout: Optional[float] = 5.0,
                 overlay: Optional[ArenaOverlay] = None):
        self.state = state or RelayState()
        self.connections: Dict[str, Any] = {}
        self.uploads_dir = Path(uploads_dir) if uploads_dir else Path("public/uploads")
        self.max_upload_bytes = max_upload_bytes
        self.send_timeout = send_timeout
        self.overlay: ArenaOverlay = dict(overlay or DEFAULT_OVERLAY)
        self._lock = asyncio.Lock()
        self._closing = set()

        self._handlers = {
            "control-room-connected": self._on_control_room,
            "arena-display-connected": self._on_arena_display,
            "register-mobile-device": self._on_register_mobile,
            "camera-access-approved": self._on_camera_access_approved,
            "preview-update": self._on_preview_update,
            "camera-stream": self._on_preview_update,
            "go-live": self._on_go_live,
            "update-display-settings": self._on_display_settings,
            "update-mobile-settings": self._on_mobile_settings,
            "update-sponsors": self._on_sponsors,
        }

    # ============================================================
    # CONNECTION LIFECYCLE
    # ============================================================

    async def connect(self, connection) -> str:
        """Register a new connection and hydrate it with the settings snapshot"""
        async with self._lock:
            session_id = generate_session_id()
            while session_id in self.state.sessions:
                session_id = generate_session_id()

            self.state.sessions.register(session_id)
            self.connections[session_id] = connection
            logger.info("📱 New connection %s (total: %d)", session_id, len(self.connections))

            await self._send(session_id, SESSION_ASSIGNED, {"id": session_id})
            await self._send(session_id, INITIAL_SETTINGS, self.state.settings.snapshot())
        return session_id

    async def disconnect(self, session_id: str) -> None:
        async with self._lock:
            self.connections.pop(session_id, None)
            removed = self.state.sessions.remove(session_id)
            if removed is None:
                return

            if self.state.live.clear_if_matches(session_id):
                logger.info("⏹️ Live device %s disconnected, arena is idle", session_id)
                await self._broadcast(LIVE_DEVICE_CHANGED, None)

            if removed["role"] == ROLE_MOBILE:
                await self._broadcast(
                    DEVICE_DISCONNECTED, session_id,
                    targets=self.state.sessions.ids(ROLE_CONTROL_ROOM),
                )
            logger.info(
                "👋 Disconnected %s [%s] (remaining: %d)",
                session_id, removed["role"], len(self.connections)
            )

    async def handle(self, session_id: str, message: WsInMsg) -> None:
        """
        Route one inbound frame.

        Unknown events, malformed payloads and references to unknown
        sessions are dropped without a reply.
        """
        if not isinstance(message, dict) or not isinstance(message.get("type"), str):
            logger.debug("Ignoring malformed frame from %s", session_id)
            return

        event = message["type"]
        data = message.get("data")

        if event == "upload-sponsor":
            # disk I/O stays outside the lock
            await self._on_upload_sponsor(session_id, data)
            return

        handler = self._handlers.get(event)
        if handler is None:
            logger.debug("Ignoring unknown event %r from %s", event, session_id)
            return

        async with self._lock:
            if session_id not in self.state.sessions:
                logger.debug("Ignoring %r from unknown session %s", event, session_id)
                return
            try:
                await handler(session_id, data)
            except RelayError as e:
                logger.debug("Ignored %r from %s: %s", event, session_id, e)

    # ============================================================
    # ROLE ANNOUNCEMENTS
    # ============================================================

    async def _on_control_room(self, session_id: str, data: Any) -> None:
        self.state.sessions.register(session_id, ROLE_CONTROL_ROOM)
        logger.info("🎛️ Control room connected: %s", session_id)

        live_id = self.state.live.current()
        devices: List[SessionSummary] = [
            {
                "id": session["id"],
                "name": session["name"],
                "preview": session["preview"],
                "live": session["id"] == live_id,
            }
            for session in self.state.sessions.list(ROLE_MOBILE)
        ]
        await self._send(session_id, DEVICE_LIST_UPDATE, devices)
        await self._send(session_id, LIVE_DEVICE_CHANGED, live_id)

    async def _on_arena_display(self, session_id: str, data: Any) -> None:
        self.state.sessions.register(session_id, ROLE_ARENA_DISPLAY)
        logger.info("🏟️ Arena display connected: %s", session_id)

        live_id = self.state.live.current()
        if live_id is not None and live_id in self.state.sessions:
            preview = self.state.sessions.get(live_id)["preview"]
            await self._send(session_id, ARENA_DISPLAY_UPDATE, self._arena_payload(preview))

    async def _on_register_mobile(self, session_id: str,
                                  data: Optional[RegisterMobilePayload]) -> None:
        name = data.get("name") if isinstance(data, dict) else None
        session = self.state.sessions.register(session_id, ROLE_MOBILE, name=name)
        logger.info("📸 Mobile device registered: %s (%s)", session["name"], session_id)

        await self._broadcast(
            DEVICE_CONNECTED, {"id": session_id, "name": session["name"]},
            targets=self.state.sessions.ids(ROLE_CONTROL_ROOM),
        )
        await self._send(session_id, MOBILE_SETTINGS_UPDATED,
                         self.state.settings.get_mobile_settings())

    async def _on_camera_access_approved(self, session_id: str, data: Any) -> None:
        await self._send(session_id, START_PREVIEW)

    # ============================================================
    # FRAMES AND LIVE SELECTION
    # ============================================================

    async def _on_preview_update(self, session_id: str, data: Any) -> None:
        if data is None or not self.state.sessions.record_preview(session_id, data):
            raise UnknownSession(session_id)

        await self._broadcast(
            PREVIEW_UPDATE, {"id": session_id, "preview": data},
            targets=self.state.sessions.ids(ROLE_CONTROL_ROOM),
        )
        if self.state.live.is_live(session_id):
            await self._broadcast(
                ARENA_DISPLAY_UPDATE, self._arena_payload(data),
                targets=self.state.sessions.ids(ROLE_ARENA_DISPLAY),
            )

    async def _on_go_live(self, session_id: str, data: Any) -> None:
        target = self.state.live.set_live(data)
        logger.info("🔴 %s (%s) is now live", target["name"], target["id"])

        await self._broadcast(
            ARENA_DISPLAY_UPDATE, self._arena_payload(target["preview"]),
            targets=self.state.sessions.ids(ROLE_ARENA_DISPLAY),
        )
        await self._broadcast(LIVE_DEVICE_CHANGED, target["id"])

    def _arena_payload(self, content: Any) -> ArenaDisplayUpdate:
        return {"content": content, "overlay": dict(self.overlay)}

    # ============================================================
    # SETTINGS
    # ============================================================

    async def _on_display_settings(self, session_id: str, data: Any) -> None:
        applied = self.state.settings.merge_display_settings(data)
        if not applied:
            return
        logger.info("Display settings updated by %s: %s", session_id, applied)
        await self._broadcast(DISPLAY_SETTINGS_UPDATED, applied, exclude=session_id)

    async def _on_mobile_settings(self, session_id: str, data: Any) -> None:
        applied = self.state.settings.merge_mobile_settings(data)
        if not applied:
            return
        logger.info("Mobile settings updated by %s: %s", session_id, applied)
        await self._broadcast(MOBILE_SETTINGS_UPDATED, applied, exclude=session_id)

    async def _on_sponsors(self, session_id: str, data: Any) -> None:
        sponsors = self.state.settings.set_sponsors(data)
        if sponsors is None:
            return
        logger.info("Sponsor list updated by %s (%d entries)", session_id, len(sponsors))
        await self._broadcast(SPONSORS_UPDATED, sponsors, exclude=session_id)

    async def _on_upload_sponsor(self, session_id: str,
                                 data: Optional[UploadSponsorPayload]) -> None:
        if session_id not in self.connections:
            return
        if not isinstance(data, dict):
            data = {}

        loop = asyncio.get_running_loop()
        write = functools.partial(
            save_upload, self.uploads_dir,
            data.get("fileName"), data.get("fileData"),
            max_bytes=self.max_upload_bytes,
        )
        try:
            url = await loop.run_in_executor(None, write)
        except AssetWriteFailure as e:
            logger.warning("Sponsor upload from %s failed: %s", session_id, e)
            await self._send(session_id, SPONSOR_UPLOAD_FAILED, {"error": str(e)})
            return

        logger.info("🖼️ Sponsor asset stored at %s", url)
        await self._send(session_id, SPONSOR_UPLOADED, {"url": url})

    # ============================================================
    # DELIVERY
    # ============================================================

    async def _send(self, session_id: str, event: str, data: Any = None) -> None:
        await self._deliver(session_id, json.dumps(envelope(event, data)))

    async def _broadcast(self, event: str, data: Any = None, *,
                         targets: Optional[Iterable[str]] = None,
                         exclude: Optional[str] = None) -> None:
        """Send one event to `targets` (default: every connection)"""
        if targets is None:
            targets = list(self.connections)
        targets = [sid for sid in targets if sid != exclude]
        if not targets:
            return

        message = json.dumps(envelope(event, data))
        await asyncio.gather(*(self._deliver(sid, message) for sid in targets))

    async def _deliver(self, session_id: str, message: str) -> None:
        connection = self.connections.get(session_id)
        if connection is None:
            return
        try:
            await asyncio.wait_for(connection.send_str(message), self.send_timeout)
        except asyncio.TimeoutError:
            logger.warning("Send to %s timed out, closing connection", session_id)
            self._drop(session_id, connection)
        except Exception as e:
            # the connection's own disconnect path cleans up
            logger.debug("Failed to send to %s: %s", session_id, e)

    def _drop(self, session_id: str, connection) -> None:
        """Forget a stuck connection and close it in the background"""
        if self.connections.get(session_id) is connection:
            del self.connections[session_id]
        task = asyncio.ensure_future(connection.close())
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)
