"""Real-time infrastructure — Redis pub/sub, WebSocket relay and client.

Learn: Events flow through two hops:
1. Order emitter → Redis PUBLISH (server-side broadcast)
2. Redis SUBSCRIBE → WebSocket → ConnectionManager (client delivery)

The client half (connection, transport, rooms) never touches Redis; it only
speaks the frame format in orderpulse.realtime.frames.
"""
