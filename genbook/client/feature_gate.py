"""
Declarative feature gate over EntitlementsClient.

    gate = FeatureGate(client, "voice_commands")
    widget = gate.render(voice_panel)

A gate loads entitlements once; make a new gate to re-check (the client's
cache TTL still applies).
"""

import enum
import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from genbook.client.entitlements import ApiError, EntitlementsClient, is_entitled

logger = logging.getLogger(__name__)

LOAD_ERROR_MESSAGE = "Failed to load plan"


class GateState(str, enum.Enum):
    LOADING = "loading"
    ENTITLED = "entitled"
    NOT_ENTITLED = "not_entitled"
    ERROR = "error"


@dataclass(frozen=True)
class UpgradePrompt:
    """Default fallback: an upgrade call to action."""
    message: str = "This feature requires an upgraded plan."
    link_text: str = "Upgrade to unlock"
    href: str = "/billing"


class FeatureGate:
    def __init__(self, client: EntitlementsClient, feature_key: str, fallback: Any = None):
        self.client = client
        self.feature_key = str(getattr(feature_key, "value", feature_key))
        self.fallback = fallback if fallback is not None else UpgradePrompt()
        self.state = GateState.LOADING
        self.error: Optional[str] = None
        self.entitlements = None

    def load(self) -> GateState:
        """Fetch once; later calls return the settled state."""
        if self.state is not GateState.LOADING:
            return self.state
        try:
            self.entitlements = self.client.fetch_entitlements()
        except (ApiError, httpx.HTTPError) as e:
            logger.warning("Feature gate could not load entitlements", extra={
                "feature_key": self.feature_key,
                "error": str(e),
            })
            self.error = LOAD_ERROR_MESSAGE
            self.state = GateState.ERROR
            return self.state

        if is_entitled(self.entitlements, self.feature_key):
            self.state = GateState.ENTITLED
        else:
            self.state = GateState.NOT_ENTITLED
        return self.state

    @property
    def entitled(self) -> bool:
        return self.load() is GateState.ENTITLED

    def render(self, children: Any) -> Any:
        """children when entitled, otherwise the fallback."""
        return children if self.entitled else self.fallback
