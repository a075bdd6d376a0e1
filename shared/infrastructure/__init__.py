"""
Infrastructure module: realtime event bus.
"""
