"""
HTTP and WebSocket handlers for the arena relay
Page serving + settings with ETag caching + QR code + real-time channel
"""
import hashlib
import json
import logging
from pathlib import Path
from typing import Optional

from aiohttp import web

from .errors import QRGenerationFailure
from .router import EventRouter
from .utils import build_qr_data_url

logger = logging.getLogger("arenacast")

router_key = web.AppKey("router", EventRouter)
static_dir_key = web.AppKey("static_dir", Path)
public_url_key = web.AppKey("public_url", str)

max_msg_size_key = web.AppKey("max_msg_size", int)

# aiohttp default frame limit
DEFAULT_MAX_MSG_SIZE = 4 * 1024 * 1024

PAGES = {
    "/": "index.html",
    "/mobile": "mobile.html",
    "/control-room": "control-room.html",
    "/arena-display": "arena-display.html",
}

# ============================================================
# WEBSOCKET CHANNEL
# ============================================================

def reject_constant(name: str):
    """Refuse NaN and Infinity, which are not valid JSON for the browser clients"""
    raise ValueError(f"non-finite constant {name}")


def max_msg_size_for(max_upload_bytes: int) -> int:
    """Largest frame to accept: a base64 upload of `max_upload_bytes` plus envelope"""
    encoded = (max_upload_bytes + 2) // 3 * 4
    return max(DEFAULT_MAX_MSG_SIZE, encoded + 64 * 1024)


async def ws_channel(request: web.Request) -> web.WebSocketResponse:
    """Real-time channel shared by phones, control room and arena display"""
    ws = web.WebSocketResponse(
        max_msg_size=request.app.get(max_msg_size_key, DEFAULT_MAX_MSG_SIZE)
    )
    await ws.prepare(request)

    router = request.app[router_key]
    session_id = await router.connect(ws)

    try:
        async for msg in ws:
            if msg.type == web.WSMsgType.TEXT:
                # Handle ping/pong for keepalive
                if msg.data == "ping":
                    await ws.send_str("pong")
                    continue
                try:
                    message = json.loads(msg.data, parse_constant=reject_constant)
                except ValueError:
                    logger.debug("Dropping non-JSON frame from %s", session_id)
                    continue
                await router.handle(session_id, message)
            elif msg.type == web.WSMsgType.BINARY:
                logger.debug("Dropping binary frame from %s", session_id)
            elif msg.type == web.WSMsgType.ERROR:
                logger.debug("WebSocket error on %s: %s", session_id, ws.exception())
    finally:
        await router.disconnect(session_id)

    return ws

# ============================================================
# PAGES
# ============================================================

async def serve_page(request: web.Request) -> web.StreamResponse:
    page = request.app[static_dir_key] / PAGES[request.path]
    if not page.is_file():
        raise web.HTTPNotFound(text=f"{page.name} is missing")
    return web.FileResponse(page)

# ============================================================
# SETTINGS
# ============================================================

async def api_settings(request: web.Request) -> web.Response:
    """Current settings snapshot with ETag caching"""
    snapshot = request.app[router_key].state.settings.snapshot()

    content = json.dumps(snapshot, sort_keys=True)
    etag = hashlib.md5(content.encode()).hexdigest()

    if request.headers.get("If-None-Match") == etag:
        return web.Response(status=304)

    response = web.json_response(snapshot)
    response.headers["ETag"] = etag
    response.headers["Cache-Control"] = "no-cache"
    return response

# ============================================================
# QR CODE
# ============================================================

def mobile_url(request: web.Request) -> str:
    """URL the phones should open, from config or from the request itself"""
    base: Optional[str] = request.app.get(public_url_key)
    if not base:
        base = f"{request.scheme}://{request.host}"
    return base.rstrip("/") + "/mobile"


async def api_qr_code(request: web.Request) -> web.Response:
    url = mobile_url(request)
    try:
        qr_code = build_qr_data_url(url)
    except QRGenerationFailure as e:
        logger.error("QR Code generation error: %s", e)
        return web.json_response({"error": "Failed to generate QR code"}, status=500)
    return web.json_response({"qrCode": qr_code, "url": url})
