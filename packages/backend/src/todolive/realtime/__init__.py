"""Real-time infrastructure — connection registry, broadcaster, WebSocket.

Learn: Events flow through two paths:
1. Services → Broadcaster → every local socket in the user's room
2. Broadcaster → Redis PUBLISH → relay task on other processes → their sockets

Path 2 is optional. Without Redis the server runs as a single process and
path 1 alone is complete.
"""
