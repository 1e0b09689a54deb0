import logging
from collections import defaultdict
from typing import Any, Dict, Set

from fastapi import Request, WebSocket

NEW_APPOINTMENT = "new-appointment"
APPOINTMENT_UPDATED = "appointment-updated"


class NotificationHub:
    """
    Open WebSocket connections grouped by channel. A channel is the id of
    the user the events are meant for.
    """

    def __init__(self) -> None:
        self.channels: Dict[str, Set[WebSocket]] = defaultdict(set)

    async def connect(self, channel: str, websocket: WebSocket) -> None:
        await websocket.accept()
        self.channels[channel].add(websocket)
        logging.info(f"Socket joined channel {channel}")

    def disconnect(self, channel: str, websocket: WebSocket) -> None:
        sockets = self.channels.get(channel)
        if not sockets:
            return
        sockets.discard(websocket)
        if not sockets:
            del self.channels[channel]
        logging.info(f"Socket left channel {channel}")

    async def emit(self, channel: str, event: str, data: Any) -> None:
        """Best-effort delivery; a failing socket is dropped, never raised to the caller."""
        for websocket in list(self.channels.get(channel, ())):
            try:
                await websocket.send_json({"event": event, "data": data})
            except Exception as e:
                logging.warning(f"Failed to emit {event} to channel {channel}: {str(e)}")
                self.disconnect(channel, websocket)


def get_notifier(request: Request) -> NotificationHub:
    return request.app.state.notifier
