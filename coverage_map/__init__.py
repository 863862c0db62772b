"""Coverage map server for MeshCore wardrive and MQTT samples."""

__version__ = "1.0.0"
