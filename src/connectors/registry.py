"""Provider name to connector class lookup."""

from typing import Dict, Type

from src.connectors.base import ProviderConnector
from src.connectors.gmail import GmailConnector
from src.connectors.office365 import Office365Connector

CONNECTORS: Dict[str, Type[ProviderConnector]] = {
    GmailConnector.provider: GmailConnector,
    Office365Connector.provider: Office365Connector,
}


def get_connector(provider: str, **kwargs) -> ProviderConnector:
    """Instantiate the connector for ``provider``."""
    try:
        connector_cls = CONNECTORS[provider]
    except KeyError:
        raise ValueError(f"Unsupported mail provider: {provider!r}") from None
    return connector_cls(**kwargs)
