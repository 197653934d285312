"""In-memory connectors for testing the engine without real tools.

Usage:
    from fake_connectors import FakeConnector, RecordingSleep

    connector = FakeConnector(extension={"ms-python.python"}, env={"TZ": "UTC"})
    connector.fail_install("extension", "broken.ext")
"""

from .connector import FakeConnector, FakeConnectorError, RecordingSleep

__all__ = [
    "FakeConnector",
    "FakeConnectorError",
    "RecordingSleep",
]
