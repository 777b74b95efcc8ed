from __future__ import annotations

# Client-supplied stable identifier, survives reconnects.
Fingerprint = str

# Socket.IO session id, one per socket.
ConnectionHandle = str

RoomID = str
MessageID = str
