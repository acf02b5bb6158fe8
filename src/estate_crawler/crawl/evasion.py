"""Human-like page settling and DataDome challenge detection.

After every navigation the coordinator:
1. Dismisses the cookie consent prompt (first recognized button wins)
2. Scrolls a bounded distance in uneven steps
3. Probes for a DataDome challenge and makes one mitigation pass
4. Reports whether the challenge is still there
"""

from __future__ import annotations

import logging
import random
from enum import Enum

from .base import PageHandle

logger = logging.getLogger(__name__)


class ChallengeState(str, Enum):
    CLEAR = "clear"
    CHALLENGE_PRESENT = "challenge_present"  # seen, then cleared by mitigation
    CHALLENGE_UNRESOLVED = "challenge_unresolved"


# Tried in order; Didomi is the consent manager idealista uses
CONSENT_SELECTORS = [
    "#didomi-notice-agree-button",
    "[id*='didomi'] button[class*='agree']",
    "button:has-text('Aceitar')",
    "button:has-text('Aceito')",
    "button:has-text('Aceitar tudo')",
    "button:has-text('Concordo')",
    "button:has-text('Accept')",
    "button:has-text('Accept all')",
    "button[id*='accept']",
    "button[class*='accept']",
]

# The DataDome tag script loads on every page, so only the captcha frame counts
CHALLENGE_SELECTORS = [
    "iframe[src*='captcha-delivery.com']",
    "iframe[src*='geo.captcha-delivery']",
    "iframe[title*='DataDome']",
]

CHALLENGE_PHRASES = [
    "please enable js and disable any ad blocker",
    "verify you are human",
    "verify you're human",
    "você foi bloqueado",
    "acesso bloqueado",
    "uso indevido",
    "access denied",
]


class EvasionTimings:
    """Interaction timing in milliseconds."""
    CONSENT_VISIBLE_MS = 2_000
    AFTER_CONSENT_MS = 500
    SCROLL_STEP_PAUSE = (150, 450)
    MITIGATION_SETTLE = (2_000, 4_000)


class EvasionLimits:
    """Bounds on simulated interaction."""
    SCROLL_DISTANCE_PX = 500
    SCROLL_STEPS = (3, 5)
    MITIGATION_MOUSE_MOVES = 4
    VIEWPORT = (1920, 1080)


class EvasionCoordinator:
    """Settles a freshly rendered page and classifies its challenge state."""

    def __init__(
        self,
        scroll_distance_px: int = EvasionLimits.SCROLL_DISTANCE_PX,
        rng: random.Random | None = None,
    ):
        self.scroll_distance_px = max(0, scroll_distance_px)
        self._rng = rng or random.Random()

    async def settle(self, page: PageHandle) -> ChallengeState:
        """Run consent dismissal, scrolling and challenge handling on a page."""
        await self.dismiss_consent(page)
        await self.simulate_scroll(page)

        if not await self.detect_challenge(page):
            return ChallengeState.CLEAR

        logger.warning(f"DataDome challenge detected on {page.url}, attempting mitigation")
        await self.mitigate(page)

        if await self.detect_challenge(page):
            logger.error(f"Challenge still present after mitigation: {page.url}")
            return ChallengeState.CHALLENGE_UNRESOLVED

        logger.info("Challenge cleared after mitigation")
        return ChallengeState.CHALLENGE_PRESENT

    async def dismiss_consent(self, page: PageHandle) -> str | None:
        """Click the first recognized consent button.

        Returns:
            The selector that worked, or None.
        """
        for selector in CONSENT_SELECTORS:
            try:
                if await page.click_if_visible(selector, timeout_ms=EvasionTimings.CONSENT_VISIBLE_MS):
                    logger.info("Accepted cookie consent")
                    await page.wait(EvasionTimings.AFTER_CONSENT_MS)
                    return selector
            except Exception as e:
                logger.debug(f"Consent selector '{selector}' failed: {e}")
                continue
        return None

    async def simulate_scroll(self, page: PageHandle) -> int:
        """Scroll down a bounded distance in a few uneven steps.

        Returns:
            Total pixels scrolled.
        """
        if self.scroll_distance_px == 0:
            return 0

        steps = self._rng.randint(*EvasionLimits.SCROLL_STEPS)
        remaining = self.scroll_distance_px
        scrolled = 0
        try:
            for step in range(steps):
                if step == steps - 1:
                    amount = remaining
                else:
                    share = remaining / (steps - step)
                    amount = int(self._rng.uniform(0.6, 1.4) * share)
                    amount = min(amount, remaining)
                if amount <= 0:
                    continue
                await page.scroll_by(amount)
                scrolled += amount
                remaining -= amount
                await page.wait(self._rng.uniform(*EvasionTimings.SCROLL_STEP_PAUSE))
        except Exception as e:
            logger.debug(f"Scroll simulation interrupted: {e}")
        return scrolled

    async def detect_challenge(self, page: PageHandle) -> bool:
        """Check for DataDome challenge markers on the page."""
        try:
            for selector in CHALLENGE_SELECTORS:
                if await page.has_element(selector):
                    logger.debug(f"Challenge frame matched '{selector}'")
                    return True

            page_lower = (await page.body_text()).lower()
            for phrase in CHALLENGE_PHRASES:
                if phrase in page_lower:
                    logger.warning(f"Detected block indicator: '{phrase}'")
                    return True
            return False
        except Exception as e:
            logger.debug(f"Challenge check failed: {e}")
            return False

    async def mitigate(self, page: PageHandle) -> None:
        """One mitigation pass: wander the mouse, then give the challenge time to clear."""
        width, height = EvasionLimits.VIEWPORT
        try:
            for _ in range(EvasionLimits.MITIGATION_MOUSE_MOVES):
                x = self._rng.uniform(0.1, 0.9) * width
                y = self._rng.uniform(0.1, 0.9) * height
                await page.move_mouse(x, y, steps=self._rng.randint(8, 20))
                await page.wait(self._rng.uniform(100, 300))
            await page.wait(self._rng.uniform(*EvasionTimings.MITIGATION_SETTLE))
        except Exception as e:
            logger.debug(f"Mitigation interrupted: {e}")
