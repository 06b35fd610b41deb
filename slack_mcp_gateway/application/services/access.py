"""User and channel access control for inbound messages."""

import logging
from dataclasses import dataclass

from slack_mcp_gateway.configuration.config import SecurityConfig

logger = logging.getLogger(__name__)

WILDCARD = "*"


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    reason: str


class AccessController:
    """
    Decides whether a user may talk to the bot in a channel.

    Admin users bypass every other rule. In strict mode both the user and
    the channel must be allowed; otherwise either one suffices. A ``"*"``
    entry allows everyone.
    """

    def __init__(self, security: SecurityConfig | None = None) -> None:
        self._security = security or SecurityConfig()

    @property
    def enabled(self) -> bool:
        return self._security.enabled

    @property
    def rejection_message(self) -> str:
        return self._security.rejection_message

    def update(self, security: SecurityConfig) -> None:
        self._security = security

    @staticmethod
    def _listed(value: str, allowed: list[str]) -> bool:
        return WILDCARD in allowed or value in allowed

    def check(self, user_id: str, channel_id: str) -> AccessDecision:
        security = self._security
        if not security.enabled:
            return AccessDecision(True, "Security disabled")

        if user_id in security.admin_users:
            decision = AccessDecision(True, "Admin user access")
        else:
            user_ok = self._listed(user_id, security.allowed_users)
            channel_ok = self._listed(channel_id, security.allowed_channels)
            decision = self._decide(user_ok, channel_ok, security.strict_mode)

        if decision.allowed:
            logger.debug(
                f"[Access] Allowed user={user_id} channel={channel_id}: {decision.reason}"
            )
        elif security.log_unauthorized:
            logger.warning(
                f"[Access] Denied user={user_id} channel={channel_id}: {decision.reason}"
            )
        return decision

    @staticmethod
    def _decide(user_ok: bool, channel_ok: bool, strict: bool) -> AccessDecision:
        if strict:
            if user_ok and channel_ok:
                return AccessDecision(True, "User and channel both whitelisted")
            if not user_ok and not channel_ok:
                return AccessDecision(False, "User and channel not whitelisted (strict mode)")
            if not user_ok:
                return AccessDecision(False, "User not whitelisted (strict mode)")
            return AccessDecision(False, "Channel not whitelisted (strict mode)")

        if user_ok and channel_ok:
            return AccessDecision(True, "User and channel both whitelisted")
        if user_ok:
            return AccessDecision(True, "User whitelisted")
        if channel_ok:
            return AccessDecision(True, "Channel whitelisted")
        return AccessDecision(False, "Neither user nor channel whitelisted")
