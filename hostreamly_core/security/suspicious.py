"""
Suspicious Activity Classifier
==============================

Stateless heuristics over request metadata. No I/O, no stored state.

Heuristics are independent and OR-combined:
    - user agent missing or shorter than the minimum length
    - user agent matches a bot or automation-tool signature
    - path matches a sensitive-path signature (admin panels, env files,
      database admin tools)

Flagged requests are routed through a much tighter limiter by the
admission orchestrator.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Protocol, Sequence

from hostreamly_core.core.config import AdmissionSettings

MISSING_USER_AGENT = "Missing User-Agent"
SHORT_USER_AGENT = "Short User-Agent"
BOT_USER_AGENT = "Bot-like User-Agent"
AUTOMATED_TOOL = "Automated tool detected"
SENSITIVE_PATH = "Sensitive path access"


class RequestMetadata(Protocol):
    user_agent: Optional[str]
    path: str


@dataclass
class Classification:
    """Result of classifying one request"""

    suspicious: bool
    reasons: List[str] = field(default_factory=list)


def _signature_pattern(signatures: Iterable[str]) -> Optional[re.Pattern]:
    escaped = [re.escape(s) for s in signatures if s]
    if not escaped:
        return None
    return re.compile("|".join(escaped), re.IGNORECASE)


class SuspiciousActivityClassifier:
    """
    Heuristic request scorer.

    Usage:
        classifier = SuspiciousActivityClassifier.from_settings(settings)
        result = classifier.classify(request)
        if result.suspicious:
            ...
    """

    def __init__(
        self,
        bot_signatures: Sequence[str] = ("bot", "crawler", "spider", "scraper"),
        automation_signatures: Sequence[str] = (
            "curl",
            "wget",
            "python",
            "requests",
            "postman",
            "insomnia",
        ),
        sensitive_paths: Sequence[str] = (
            "/admin",
            "/.env",
            "/config",
            "/backup",
            "/wp-admin",
            "/phpmyadmin",
            "/mysql",
        ),
        min_user_agent_length: int = 10,
    ):
        self._bot_pattern = _signature_pattern(bot_signatures)
        self._automation_pattern = _signature_pattern(automation_signatures)
        self._sensitive_paths = tuple(p.lower() for p in sensitive_paths if p)
        self._min_user_agent_length = min_user_agent_length

    @classmethod
    def from_settings(cls, settings: AdmissionSettings) -> "SuspiciousActivityClassifier":
        return cls(
            bot_signatures=settings.bot_signatures,
            automation_signatures=settings.automation_signatures,
            sensitive_paths=settings.sensitive_paths,
            min_user_agent_length=settings.min_user_agent_length,
        )

    def classify(self, request: RequestMetadata) -> Classification:
        """Classify a request by its user agent and path."""
        return self.classify_values(request.user_agent, request.path)

    def classify_values(self, user_agent: Optional[str], path: str) -> Classification:
        reasons: List[str] = []
        user_agent = (user_agent or "").strip()

        if not user_agent:
            reasons.append(MISSING_USER_AGENT)
        elif len(user_agent) < self._min_user_agent_length:
            reasons.append(SHORT_USER_AGENT)

        if user_agent:
            if self._bot_pattern and self._bot_pattern.search(user_agent):
                reasons.append(BOT_USER_AGENT)
            if self._automation_pattern and self._automation_pattern.search(user_agent):
                reasons.append(AUTOMATED_TOOL)

        lowered = (path or "").lower()
        for sensitive in self._sensitive_paths:
            if sensitive in lowered:
                reasons.append(f"{SENSITIVE_PATH}: {sensitive}")

        return Classification(suspicious=bool(reasons), reasons=reasons)


__all__ = [
    "MISSING_USER_AGENT",
    "SHORT_USER_AGENT",
    "BOT_USER_AGENT",
    "AUTOMATED_TOOL",
    "SENSITIVE_PATH",
    "Classification",
    "SuspiciousActivityClassifier",
]
