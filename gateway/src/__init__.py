"""
Gateway daemon package for the Modbus TCP to MQTT bridge.

Polls Modbus TCP sensors, decodes holding-register values into typed
readings, and publishes each reading as a JSON envelope to an MQTT broker.

CHANGELOG:
- 2026-10-06: Initial creation (STORY-001)

TODO:
- None
"""
