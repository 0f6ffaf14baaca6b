"""REST API server for Voice UPI.

The screen surface talks to the dialogue through these endpoints: it reads
state, draft, transcript, status and history, and sends taps (select contact,
approve, cancel, toggle listening) into the same queue as voice commands.
A WebSocket endpoint streams bus events for live rendering, and browsers
running their own recogniser push transcripts to /api/transcript.
Runs in a background thread next to the service.
"""

import asyncio
import json
import threading
import time
from datetime import datetime
from typing import Any, Optional

from aiohttp import WSMsgType, web

from voice_upi.commands import extract_amount
from voice_upi.config_loader import QUICK_AMOUNTS
from voice_upi.event_bus import EventType
from voice_upi.utils import upi_log


def _json_response(data: Any, status: int = 200) -> web.Response:
    """Create a JSON response with proper content type."""
    return web.Response(
        text=json.dumps(data, ensure_ascii=False, default=str),
        status=status,
        content_type="application/json",
    )


def _error_response(message: str, status: int = 400) -> web.Response:
    return _json_response({"error": message}, status=status)


@web.middleware
async def _error_middleware(request: web.Request, handler) -> web.StreamResponse:
    """Unexpected handler failures become JSON 500s."""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except Exception as e:
        upi_log("API", f"Error in {request.method} {request.path}: {e}", level="ERROR")
        return _error_response(str(e), status=500)


async def _read_json(request: web.Request) -> Optional[dict]:
    """Request body as a dict; empty body counts as {}. None when invalid."""
    if not request.can_read_body:
        return {}
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    return body if isinstance(body, dict) else None


class VoiceUPIAPI:
    """HTTP API server for the voice payment service."""

    def __init__(self, service: Any, host: str = "0.0.0.0", port: int = 7790):
        """
        Args:
            service: VoiceUPIService instance
            host: Bind address
            port: Bind port
        """
        self.service = service
        self.host = host
        self.port = port
        self._app: Optional[web.Application] = None
        self._runner: Optional[web.AppRunner] = None
        self._thread: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._ws_clients: list = []
        self._start_time: float = time.time()
        self._event_sub_ids: list = []

    def start(self):
        """Start the API server in a background thread."""
        self._thread = threading.Thread(target=self._run, daemon=True, name="voice-upi-api")
        self._thread.start()
        upi_log("API", f"Server starting on http://{self.host}:{self.port}")

    def stop(self):
        for event_type, sub_id in self._event_sub_ids:
            self.service.bus.unsubscribe(event_type, sub_id)
        self._event_sub_ids.clear()

        if self._loop and self._loop.is_running():
            self._loop.call_soon_threadsafe(self._loop.stop)
        upi_log("API", "Server stopped")

    def _run(self):
        """Background thread entry point."""
        self._loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self._loop)
        try:
            self._loop.run_until_complete(self._start_server())
            self._loop.run_forever()
        except OSError as e:
            upi_log("API", f"Server thread error: {e}", level="ERROR")
        finally:
            if self._runner:
                self._loop.run_until_complete(self._runner.cleanup())

    async def _start_server(self):
        self._app = self.build_app()
        self._setup_event_forwarding()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        upi_log("API", f"Server listening on http://{self.host}:{self.port}")

    def build_app(self) -> web.Application:
        """Application with all routes registered."""
        app = web.Application(middlewares=[_error_middleware])
        router = app.router
        router.add_get("/api/status", self._handle_status)
        router.add_get("/api/history", self._handle_history)
        router.add_get("/api/contacts", self._handle_contacts)
        router.add_post("/api/payment", self._handle_initiate_payment)
        router.add_post("/api/contacts/{contact_id}/select", self._handle_select_contact)
        router.add_post("/api/amount", self._handle_set_amount)
        router.add_post("/api/approve", self._handle_approve)
        router.add_post("/api/cancel", self._handle_cancel)
        router.add_post("/api/home", self._handle_home)
        router.add_post("/api/history/show", self._handle_show_history)
        router.add_post("/api/listening", self._handle_listening)
        router.add_post("/api/transcript", self._handle_transcript)
        router.add_get("/api/events", self._handle_ws_events)
        return app

    def _setup_event_forwarding(self):
        """Forward bus events to WebSocket clients."""
        event_types = list(EventType)
        sub_ids = self.service.bus.subscribe_multi(event_types, self._on_bus_event, priority=-10)
        self._event_sub_ids = list(zip(event_types, sub_ids))

    def _on_bus_event(self, event):
        if not self._ws_clients or not self._loop:
            return

        msg = json.dumps(
            {
                "event": event.type.name,
                "data": event.payload,
                "timestamp": datetime.fromtimestamp(event.timestamp).isoformat(),
                "source": event.source,
            },
            ensure_ascii=False,
            default=str,
        )
        for ws in list(self._ws_clients):
            asyncio.run_coroutine_threadsafe(ws.send_str(msg), self._loop)

    def _queued(self, action: str, **params) -> web.Response:
        self.service.submit_ui_action(action, **params)
        return _json_response({"queued": action}, status=202)

    # ------------------------------------------------------------------
    # Route handlers
    # ------------------------------------------------------------------

    async def _handle_status(self, request: web.Request) -> web.Response:
        """GET /api/status - Current screen state."""
        data = self.service.snapshot()
        data["uptime_seconds"] = round(time.time() - self._start_time, 1)
        return _json_response(data)

    async def _handle_history(self, request: web.Request) -> web.Response:
        """GET /api/history - Completed transactions, most recent first."""
        return _json_response({"transactions": [tx.to_dict() for tx in self.service.ledger.history()]})

    async def _handle_contacts(self, request: web.Request) -> web.Response:
        """GET /api/contacts - Contact directory and quick amounts."""
        contacts = [{"id": c.id, "name": c.name, "upi_id": c.upi_id} for c in self.service.contacts]
        return _json_response({"contacts": contacts, "quick_amounts": list(QUICK_AMOUNTS)})

    async def _handle_initiate_payment(self, request: web.Request) -> web.Response:
        """POST /api/payment - "New Payment" button."""
        return self._queued("initiate_payment")

    async def _handle_select_contact(self, request: web.Request) -> web.Response:
        """POST /api/contacts/{contact_id}/select - Tap on a contact."""
        contact_id = request.match_info["contact_id"]
        if self.service.find_contact(contact_id=contact_id) is None:
            return _error_response(f"Contact '{contact_id}' not found", status=404)
        return self._queued("select_contact", contact_id=int(contact_id))

    async def _handle_set_amount(self, request: web.Request) -> web.Response:
        """POST /api/amount - Typed amount or quick-amount button."""
        body = await _read_json(request)
        if body is None:
            return _error_response("Request body must be a JSON object")
        amount = extract_amount(str(body.get("amount", "")))
        if amount is None:
            return _error_response("'amount' must be 1-7 digits")
        return self._queued("set_amount", amount=amount)

    async def _handle_approve(self, request: web.Request) -> web.Response:
        """POST /api/approve - "Approve Payment" button."""
        return self._queued("approve")

    async def _handle_cancel(self, request: web.Request) -> web.Response:
        """POST /api/cancel - "Cancel" button."""
        return self._queued("cancel")

    async def _handle_home(self, request: web.Request) -> web.Response:
        """POST /api/home - "Back to Home" button, no announcement."""
        return self._queued("home")

    async def _handle_show_history(self, request: web.Request) -> web.Response:
        """POST /api/history/show - "Transaction History" button."""
        return self._queued("show_history")

    async def _handle_listening(self, request: web.Request) -> web.Response:
        """POST /api/listening - {"enabled": bool}, toggles when omitted."""
        body = await _read_json(request)
        if body is None:
            return _error_response("Request body must be a JSON object")
        if "enabled" in body:
            if not isinstance(body["enabled"], bool):
                return _error_response("'enabled' must be a boolean")
            listening = self.service.set_listening(body["enabled"])
        else:
            listening = self.service.toggle_listening()
        return _json_response({
            "listening": listening,
            "recognition_available": self.service.coordinator.recognition_available,
        })

    async def _handle_transcript(self, request: web.Request) -> web.Response:
        """POST /api/transcript - {"transcript": str, "is_final": bool} from a browser recogniser."""
        body = await _read_json(request)
        if body is None:
            return _error_response("Request body must be a JSON object")
        transcript = body.get("transcript")
        if not isinstance(transcript, str):
            return _error_response("'transcript' must be a string")
        is_final = body.get("is_final", True)
        if not isinstance(is_final, bool):
            return _error_response("'is_final' must be a boolean")
        accepted = self.service.submit_transcript(transcript, is_final=is_final)
        return _json_response({"accepted": accepted})

    async def _handle_ws_events(self, request: web.Request) -> web.WebSocketResponse:
        """GET /api/events - WebSocket stream of bus events."""
        ws = web.WebSocketResponse(heartbeat=30.0)
        await ws.prepare(request)
        self._ws_clients.append(ws)
        upi_log("API", f"WebSocket client connected ({len(self._ws_clients)} total)")
        try:
            await ws.send_str(json.dumps({"event": "SNAPSHOT", "data": self.service.snapshot()}, default=str))
            async for msg in ws:
                if msg.type == WSMsgType.ERROR:
                    upi_log("API", f"WebSocket error: {ws.exception()}", level="WARNING")
                    break
        finally:
            if ws in self._ws_clients:
                self._ws_clients.remove(ws)
            upi_log("API", f"WebSocket client disconnected ({len(self._ws_clients)} total)")
        return ws
