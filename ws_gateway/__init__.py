"""
WebSocket Gateway.

- main.py: FastAPI app, lifespan, HTTP and WebSocket endpoints
- endpoint.py: per-socket lifecycle and frame handling
- connection_manager.py: channel index and transport fan-out
- constants.py: close codes and origin validation
"""
