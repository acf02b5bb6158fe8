"""Tests for page settling and challenge classification."""

import asyncio
import random

from estate_crawler.crawl.evasion import (
    CONSENT_SELECTORS,
    ChallengeState,
    EvasionCoordinator,
)

from fakes import CAPTCHA_FRAME, FakePage


def settle(page: FakePage, **kwargs) -> ChallengeState:
    coordinator = EvasionCoordinator(rng=random.Random(0), **kwargs)
    return asyncio.run(coordinator.settle(page))


class TestConsent:
    """Tests for consent dismissal."""

    def test_first_recognized_selector_wins(self):
        page = FakePage(consent=[CONSENT_SELECTORS[0], CONSENT_SELECTORS[4]])
        coordinator = EvasionCoordinator(rng=random.Random(0))

        selector = asyncio.run(coordinator.dismiss_consent(page))

        assert selector == CONSENT_SELECTORS[0]
        assert page.clicked == [CONSENT_SELECTORS[0]]

    def test_falls_through_to_later_selector(self):
        page = FakePage(consent=["button[class*='accept']"])
        coordinator = EvasionCoordinator(rng=random.Random(0))

        assert asyncio.run(coordinator.dismiss_consent(page)) == "button[class*='accept']"

    def test_no_prompt(self):
        page = FakePage()
        coordinator = EvasionCoordinator(rng=random.Random(0))

        assert asyncio.run(coordinator.dismiss_consent(page)) is None
        assert page.clicked == []

    def test_click_errors_are_swallowed(self):
        class BrokenPage(FakePage):
            async def click_if_visible(self, selector, timeout_ms):
                raise RuntimeError("detached")

        coordinator = EvasionCoordinator(rng=random.Random(0))
        assert asyncio.run(coordinator.dismiss_consent(BrokenPage())) is None


class TestScroll:
    """Tests for bounded scrolling."""

    def test_scrolls_exact_distance_in_steps(self):
        page = FakePage()
        coordinator = EvasionCoordinator(scroll_distance_px=500, rng=random.Random(1))

        scrolled = asyncio.run(coordinator.simulate_scroll(page))

        assert scrolled == 500
        assert sum(page.scrolled) == 500
        assert 1 <= len(page.scrolled) <= 5
        assert all(step > 0 for step in page.scrolled)

    def test_zero_distance(self):
        page = FakePage()
        coordinator = EvasionCoordinator(scroll_distance_px=0)

        assert asyncio.run(coordinator.simulate_scroll(page)) == 0
        assert page.scrolled == []


class TestSettle:
    """Tests for challenge classification."""

    def test_clear_page(self):
        page = FakePage(body="Apartamentos à venda em Lisboa")
        assert settle(page) == ChallengeState.CLEAR
        assert page.mouse_moves == []

    def test_challenge_cleared_by_mitigation(self):
        page = FakePage(elements=[CAPTCHA_FRAME], clears_after_mitigation=True)
        assert settle(page) == ChallengeState.CHALLENGE_PRESENT
        assert page.mouse_moves

    def test_challenge_unresolved(self):
        page = FakePage(elements=[CAPTCHA_FRAME])
        assert settle(page) == ChallengeState.CHALLENGE_UNRESOLVED

    def test_block_phrase_detected(self):
        page = FakePage(body="Please enable JS and disable any ad blocker")
        assert settle(page) == ChallengeState.CHALLENGE_UNRESOLVED

    def test_consent_and_scroll_before_challenge_check(self):
        page = FakePage(consent=[CONSENT_SELECTORS[0]])
        settle(page)
        assert page.clicked == [CONSENT_SELECTORS[0]]
        assert sum(page.scrolled) == 500

    def test_check_errors_treated_as_clear(self):
        class FlakyPage(FakePage):
            async def has_element(self, selector):
                raise RuntimeError("context destroyed")

        assert settle(FlakyPage()) == ChallengeState.CLEAR
