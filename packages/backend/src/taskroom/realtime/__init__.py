"""Real-time infrastructure — in-process rooms + WebSocket.

Learn: Events flow in one direction:
1. Services → RoomManager.publish (after the write commits)
2. RoomManager → each subscriber's outbox → WebSocket → client

The RoomManager is built by create_app(), stored on app.state.rooms, and
handed to every service that publishes. There is no global getter.
"""
