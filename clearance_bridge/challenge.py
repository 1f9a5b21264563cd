"""
Cloudflare challenge detection.

A body-substring heuristic tuned to the provider's current interstitial wording. It has no
secondary confirmation, so a reworded challenge page will silently stop matching.
"""

from . import constants


def is_challenge(body: object) -> bool:
    if not isinstance(body, str):
        return False
    lower = body.lower()
    if constants.CHALLENGE_BRAND_TOKEN not in lower:
        return False
    return any(token in lower for token in constants.CHALLENGE_MARKER_TOKENS)


def should_refresh(status: int, body: object) -> bool:
    """A 403 triggers a refresh on its own; otherwise the body has to look like a challenge."""
    return int(status or 0) == constants.HTTPStatus.FORBIDDEN or is_challenge(body)
