#!/usr/bin/env python3
"""
Arena Relay - Entry Point
Phone camera previews -> control room -> arena big screen
WebSocket channel + rate limiting + optional TLS
"""
import logging
import socket
import ssl
import os
import time
from pathlib import Path
from typing import Optional
from aiohttp import web
from collections import defaultdict

from arenacast.api import (
    PAGES, serve_page, api_settings, api_qr_code, ws_channel, max_msg_size_for,
    router_key, static_dir_key, public_url_key, max_msg_size_key,
)
from arenacast.router import EventRouter, DEFAULT_OVERLAY

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger("arenacast")

STATIC_DIR = Path(os.getenv('ARENA_STATIC_DIR', './public'))
UPLOADS_DIR = Path(os.getenv('ARENA_UPLOADS_DIR', str(STATIC_DIR / 'uploads')))
PUBLIC_URL = os.getenv('ARENA_PUBLIC_URL')
EVENT_TITLE = os.getenv('ARENA_EVENT_TITLE', DEFAULT_OVERLAY["eventTitle"])
SPONSOR_LOGO = os.getenv('ARENA_SPONSOR_LOGO', DEFAULT_OVERLAY["sponsorLogo"])
RATE_LIMIT_PER_MINUTE = int(os.getenv('RATE_LIMIT_PER_MINUTE', 100))
MAX_UPLOAD_BYTES = int(os.getenv('ARENA_MAX_UPLOAD_BYTES', 10 * 1024 * 1024))
SEND_TIMEOUT = float(os.getenv('ARENA_SEND_TIMEOUT', 5))
TLS_CERT = os.getenv('ARENA_TLS_CERT')
TLS_KEY = os.getenv('ARENA_TLS_KEY')

# Paths that never count against the rate limit
RATE_LIMIT_EXEMPT = ('/static', '/uploads', '/ws')


def make_rate_limit_middleware(limit: int):
    """Simple rate limiting: `limit` requests per minute per IP"""
    rate_limit_store = defaultdict(list)
    last_sweep = [time.time()]

    @web.middleware
    async def rate_limit_middleware(request, handler):
        ip = request.remote
        now = time.time()

        if request.path.startswith(RATE_LIMIT_EXEMPT):
            return await handler(request)

        # Drop IPs that have been quiet for a minute
        if now - last_sweep[0] >= 60:
            for stale in [k for k, hits in rate_limit_store.items() if not hits or now - hits[-1] >= 60]:
                del rate_limit_store[stale]
            last_sweep[0] = now

        # Clean old entries
        rate_limit_store[ip] = [t for t in rate_limit_store[ip] if now - t < 60]

        if len(rate_limit_store[ip]) >= limit:
            logger.warning(f"Rate limit exceeded for {ip}")
            return web.json_response(
                {"ok": False, "error": "Rate limit exceeded"},
                status=429
            )

        rate_limit_store[ip].append(now)
        return await handler(request)

    rate_limit_middleware.store = rate_limit_store
    return rate_limit_middleware


def create_app(static_dir: Path = STATIC_DIR,
               uploads_dir: Path = UPLOADS_DIR,
               public_url: Optional[str] = PUBLIC_URL,
               event_title: str = EVENT_TITLE,
               sponsor_logo: str = SPONSOR_LOGO,
               rate_limit: int = RATE_LIMIT_PER_MINUTE,
               max_upload_bytes: int = MAX_UPLOAD_BYTES,
               send_timeout: float = SEND_TIMEOUT) -> web.Application:
    """Create and configure the aiohttp application"""
    static_dir = Path(static_dir)
    uploads_dir = Path(uploads_dir)
    uploads_dir.mkdir(parents=True, exist_ok=True)

    app = web.Application(middlewares=[make_rate_limit_middleware(rate_limit)])
    app[router_key] = EventRouter(
        uploads_dir=uploads_dir,
        max_upload_bytes=max_upload_bytes,
        send_timeout=send_timeout,
        overlay={"sponsorLogo": sponsor_logo, "eventTitle": event_title},
    )
    app[static_dir_key] = static_dir
    app[max_msg_size_key] = max_msg_size_for(max_upload_bytes)
    if public_url:
        app[public_url_key] = public_url

    # HTML routes
    for path in PAGES:
        app.router.add_get(path, serve_page)

    # API routes
    app.router.add_get("/api/qr-code", api_qr_code)
    app.router.add_get("/api/settings", api_settings)

    # WebSocket channel
    app.router.add_get("/ws", ws_channel)

    # Static files
    if static_dir.is_dir():
        app.router.add_static('/static', static_dir, name='static')
    app.router.add_static('/uploads', uploads_dir, name='uploads')

    logger.info("🏟️ Arena relay ready • static=%s • uploads=%s", static_dir, uploads_dir)
    return app


def create_ssl_context(cert: Optional[str], key: Optional[str]) -> Optional[ssl.SSLContext]:
    """HTTPS/WSS when a certificate/key pair is configured (phones need it for camera access)"""
    if not (cert and key):
        return None
    context = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
    context.load_cert_chain(cert, key)
    return context


def get_local_ip():
    """Get local WiFi IP address"""
    try:
        s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        s.connect(("8.8.8.8", 80))
        ip = s.getsockname()[0]
        s.close()
        return ip
    except OSError:
        return "localhost"


def main():
    app = create_app()
    port = int(os.environ.get("PORT", 3000))
    host = os.environ.get("SERVER_HOST", "0.0.0.0")
    ssl_context = create_ssl_context(TLS_CERT, TLS_KEY)
    scheme = "https" if ssl_context else "http"
    local_ip = get_local_ip()

    logger.info(f"🚀 Starting server on {host}:{port}")
    logger.info(f"💡 Control room: {scheme}://{local_ip}:{port}/control-room")
    logger.info(f"📱 Phones: {PUBLIC_URL or f'{scheme}://{local_ip}:{port}'}/mobile")

    web.run_app(app, host=host, port=port, ssl_context=ssl_context)


if __name__ == "__main__":
    main()
