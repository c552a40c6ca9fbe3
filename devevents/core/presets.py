"""Named rate limit rules for common call sites.

Presets are plain data built once from ``RateLimitSettings``. Call sites
derive their own identifier from a preset, e.g.
``presets.public_api.with_(identifier="events:get")``.
"""

from __future__ import annotations

from dataclasses import dataclass, fields

from devevents.core.config import RateLimitSettings
from devevents.core.rate_limit import PartitionMode, RuleConfig


@dataclass(frozen=True)
class RateLimitPresets:
    auth: RuleConfig
    public_api: RuleConfig
    payment: RuleConfig
    create_event: RuleConfig
    admin: RuleConfig

    @classmethod
    def names(cls) -> frozenset[str]:
        return frozenset(f.name for f in fields(cls))

    def get(self, name: str) -> RuleConfig:
        """Look up a preset by attribute name (``"auth"``, ``"public_api"``, ...)."""
        if name not in self.names():
            raise KeyError(f"unknown rate limit preset: {name}")
        return getattr(self, name)


def build_presets(config: RateLimitSettings) -> RateLimitPresets:
    """Build the preset table from explicit settings."""
    return RateLimitPresets(
        # Login/signup: tight and per IP, the caller is not authenticated yet
        auth=RuleConfig(
            identifier="auth",
            limit=config.auth,
            window_seconds=config.auth_window,
            partition_by=PartitionMode.IP,
        ),
        public_api=RuleConfig(
            identifier="public-api",
            limit=config.public_api,
            window_seconds=config.public_api_window,
            partition_by=PartitionMode.IP,
        ),
        payment=RuleConfig(
            identifier="payment",
            limit=config.payment,
            window_seconds=config.payment_window,
            partition_by=PartitionMode.USER_OR_IP,
        ),
        create_event=RuleConfig(
            identifier="create-event",
            limit=config.create_event,
            window_seconds=config.create_event_window,
            partition_by=PartitionMode.USER_OR_IP,
        ),
        admin=RuleConfig(
            identifier="admin",
            limit=config.admin,
            window_seconds=config.admin_window,
            partition_by=PartitionMode.USER_OR_IP,
        ),
    )
