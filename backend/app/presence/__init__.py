"""Online presence tracking and the push WebSocket."""
