"""Connector registry.

    connector = get_connector("file", estimates_csv=content)
    payload = await connector.fetch()
"""

from .base import BaseConnector, ConnectorAuthError, ConnectorError, OAuthConnector
from .file_connector import FileConnector
from .jobber import JobberConnector

CONNECTORS: dict[str, type[BaseConnector]] = {
    "file": FileConnector,
    "jobber": JobberConnector,
}


def get_connector(kind: str, **kwargs) -> BaseConnector:
    """Instantiate the connector registered for `kind`.

    Raises ConnectorError for kinds with no implementation yet
    (quickbooks, square, stripe, housecallpro, joist).
    """
    cls = CONNECTORS.get(kind)
    if cls is None:
        raise ConnectorError(f"No connector implemented for {kind!r}")
    return cls(**kwargs)


__all__ = [
    "BaseConnector",
    "CONNECTORS",
    "ConnectorAuthError",
    "ConnectorError",
    "FileConnector",
    "JobberConnector",
    "OAuthConnector",
    "get_connector",
]
