"""Exception hierarchy for the flow alert engine."""

from __future__ import annotations


class FlowWatchError(Exception):
    """Base class for all FlowWatch errors."""


class DataUnavailableError(FlowWatchError):
    """No forecast or return-period data exists for a reach."""

    def __init__(self, reach_id: str, reason: str) -> None:
        self.reach_id = reach_id
        self.reason = reason
        super().__init__(f"No data for reach {reach_id}: {reason}")


class TransientFetchError(FlowWatchError):
    """A collaborator call failed in a way the next run may not repeat."""

    def __init__(self, reach_id: str, source: str, detail: str) -> None:
        self.reach_id = reach_id
        self.source = source
        self.detail = detail
        super().__init__(f"{source} fetch failed for reach {reach_id}: {detail}")


class DeliveryError(FlowWatchError):
    """A delivery gateway rejected or failed to send a notification."""

    def __init__(self, channel: str, detail: str) -> None:
        self.channel = channel
        self.detail = detail
        super().__init__(f"{channel} delivery failed: {detail}")


class ConfigurationError(FlowWatchError):
    """Missing credentials or a collaborator that cannot be initialised."""


class BatchAbortedError(FlowWatchError):
    """A batch run could not start or continue."""
