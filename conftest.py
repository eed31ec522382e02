"""
Pytest configuration for the CHIP-8 test suite.

    python -m pytest                 # everything
    python -m pytest -m "not window" # skip tests that open a pygame window

Window and audio tests run against SDL's dummy drivers so no display or
sound card is needed.
"""

import os


def pytest_configure(config):
    """Register markers and point SDL at its dummy drivers."""
    config.addinivalue_line("markers",
        "window: tests that open a pygame window (dummy SDL video driver)")

    # Must be set before pygame initialises its subsystems
    os.environ.setdefault("SDL_VIDEODRIVER", "dummy")
    os.environ.setdefault("SDL_AUDIODRIVER", "dummy")
    os.environ.setdefault("PYGAME_HIDE_SUPPORT_PROMPT", "1")
