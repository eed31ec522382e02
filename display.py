"""
CHIP-8 Display / Host Front End
================================
Presents the 64x32 framebuffer in a pygame window, feeds the host
keyboard into the emulator as a 16-key snapshot, and plays a square-wave
tone while the sound timer is running.

The window loop owns pacing: it calls ``Chip8System.tick`` ``hz`` times
per second, which also makes ``hz`` the delay/sound timer rate.

Usage (programmatic):
    from display import Chip8Display
    disp = Chip8Display(sys_emu, scale=16, hz=300)
    disp.run()          # blocks until ESC or window close

Usage (CLI):
    python cli.py rom.ch8 --scale 16 --hz 300
"""

from __future__ import annotations

import logging
import threading
from typing import Optional, TYPE_CHECKING

from devices import Key, SCREEN_WIDTH, SCREEN_HEIGHT

if TYPE_CHECKING:
    from system import Chip8System

log = logging.getLogger(__name__)

# Window defaults
PIXEL_SIZE = 16
TICK_HZ = 300
FG_COLOR = (255, 255, 255)
BG_COLOR = (0, 0, 0)

# Audio defaults
SAMPLE_RATE = 44100
TONE_HZ = 440
VOLUME = 0.25

# Host key name -> keypad code.  Names are pygame's "K_<name>" suffixes.
#
#   1 2 3 4        1 2 3 C
#   Q W E R   ->   4 5 6 D
#   A S D F        7 8 9 E
#   Z X C V        A 0 B F
KEY_LAYOUT = {
    "x": Key.K0,
    "1": Key.K1,
    "2": Key.K2,
    "3": Key.K3,
    "q": Key.K4,
    "w": Key.K5,
    "e": Key.K6,
    "a": Key.K7,
    "s": Key.K8,
    "d": Key.K9,
    "z": Key.KA,
    "c": Key.KB,
    "4": Key.KC,
    "r": Key.KD,
    "f": Key.KE,
    "v": Key.KF,
}


def default_keymap() -> dict[int, Key]:
    """pygame key constant -> keypad code, built from ``KEY_LAYOUT``."""
    import pygame

    return {getattr(pygame, f"K_{name}"): key for name, key in KEY_LAYOUT.items()}


def framebuffer_to_rgb(fb, fg=FG_COLOR, bg=BG_COLOR):
    """Convert the 0/1 pixel grid into a (width, height, 3) uint8 array.

    The axis order matches ``pygame.surfarray`` (x first).
    """
    import numpy as np

    lit = np.frombuffer(bytes(fb.pixels), dtype=np.uint8).reshape(
        fb.height, fb.width).T
    palette = np.array([bg, fg], dtype=np.uint8)
    return palette[lit]


def square_wave(sample_rate: int = SAMPLE_RATE, freq: int = TONE_HZ,
                volume: float = VOLUME):
    """One period of a signed 16-bit square wave, as a numpy array."""
    import numpy as np

    period = max(2, int(round(sample_rate / freq)))
    amplitude = int(volume * 32767)
    wave = np.full(period, -amplitude, dtype=np.int16)
    wave[:period // 2] = amplitude
    return wave


# ── Audio ─────────────────────────────────────────────────────────────


class Beeper:
    """Looped square-wave tone gated by the sound timer."""

    def __init__(self, sample_rate: int = SAMPLE_RATE, freq: int = TONE_HZ,
                 volume: float = VOLUME):
        self.sample_rate = sample_rate
        self.freq = freq
        self.volume = volume
        self.playing = False
        self._sound = None

    def open(self) -> bool:
        """Initialise the mixer.  Returns False if no audio device exists."""
        import pygame

        try:
            pygame.mixer.init(frequency=self.sample_rate, size=-16, channels=1)
        except pygame.error as e:
            log.warning("Audio unavailable, running silent: %s", e)
            return False
        # Mixer may have negotiated a different rate
        rate, _, channels = pygame.mixer.get_init()
        wave = square_wave(rate, self.freq, self.volume)
        if channels > 1:
            import numpy as np
            wave = np.repeat(wave[:, None], channels, axis=1)
        self._sound = pygame.sndarray.make_sound(wave)
        log.info("Audio open: %d Hz, %d Hz tone", rate, self.freq)
        return True

    def update(self, on: bool):
        if self._sound is None or on == self.playing:
            return
        if on:
            self._sound.play(loops=-1)
        else:
            self._sound.stop()
        self.playing = on

    def close(self):
        self.update(False)
        self._sound = None


# ── Window ────────────────────────────────────────────────────────────


class Chip8Display:
    """pygame window driving a ``Chip8System`` at a fixed tick rate."""

    def __init__(self, sys_emu: "Chip8System", scale: int = PIXEL_SIZE,
                 hz: int = TICK_HZ, title: str = "CHIP-8",
                 keymap: Optional[dict] = None, sound: bool = True,
                 volume: float = VOLUME, tone_hz: int = TONE_HZ,
                 fg=FG_COLOR, bg=BG_COLOR):
        self.sys = sys_emu
        self.scale = max(1, scale)
        self.hz = max(1, hz)
        self.title = title
        self.keymap = keymap
        self.fg = fg
        self.bg = bg
        self.beeper: Optional[Beeper] = (
            Beeper(freq=tone_hz, volume=volume) if sound else None)
        self.keys: dict[Key, bool] = {k: False for k in Key}
        self.frames = 0
        self._stop_event = threading.Event()

    # -- public API -------------------------------------------------------

    def stop(self):
        """Ask ``run`` to return after the current tick."""
        self._stop_event.set()

    def run(self, max_ticks: Optional[int] = None) -> int:
        """Open the window and tick until closed.  Returns ticks executed."""
        import pygame

        pygame.init()
        pygame.display.set_caption(self.title)
        if self.keymap is None:
            self.keymap = default_keymap()
        screen = pygame.display.set_mode(
            (SCREEN_WIDTH * self.scale, SCREEN_HEIGHT * self.scale))
        fb_surface = pygame.Surface((SCREEN_WIDTH, SCREEN_HEIGHT))
        clock = pygame.time.Clock()
        log.info("Window %dx%d at %d ticks/s", *screen.get_size(), self.hz)
        if self.beeper is not None and not self.beeper.open():
            self.beeper = None

        self._stop_event.clear()
        ticks = 0
        try:
            self._present(pygame, screen, fb_surface)
            while not self._stop_event.is_set():
                if max_ticks is not None and ticks >= max_ticks:
                    break
                self._poll_events(pygame)
                if self._stop_event.is_set():
                    break
                should_draw, should_play = self.sys.tick(self.keys)
                ticks += 1
                if should_draw:
                    self._present(pygame, screen, fb_surface)
                if self.beeper is not None:
                    self.beeper.update(should_play)
                clock.tick(self.hz)
        finally:
            if self.beeper is not None:
                self.beeper.close()
            pygame.quit()
        return ticks

    # -- internals --------------------------------------------------------

    def _poll_events(self, pygame):
        for event in pygame.event.get():
            if event.type == pygame.QUIT:
                self._stop_event.set()
            elif event.type == pygame.KEYDOWN:
                if event.key == pygame.K_ESCAPE:
                    self._stop_event.set()
                elif event.key in self.keymap:
                    self.keys[self.keymap[event.key]] = True
            elif event.type == pygame.KEYUP:
                if event.key in self.keymap:
                    self.keys[self.keymap[event.key]] = False

    def _present(self, pygame, screen, fb_surface):
        pygame.surfarray.blit_array(
            fb_surface, framebuffer_to_rgb(self.sys.fb, self.fg, self.bg))
        pygame.transform.scale(fb_surface, screen.get_size(), screen)
        pygame.display.flip()
        self.frames += 1


class HeadlessDisplay:
    """No-window runner for tests and --headless; records framebuffer snapshots."""

    def __init__(self, sys_emu: "Chip8System"):
        self.sys = sys_emu
        self.snapshots: list[bytes] = []
        self.sound_ticks = 0

    def run(self, max_ticks: int, keys: Optional[dict] = None) -> int:
        """Tick ``max_ticks`` times with a fixed key snapshot."""
        for _ in range(max_ticks):
            should_draw, should_play = self.sys.tick(keys)
            if should_draw:
                self.snapshots.append(self.sys.fb.snapshot())
            if should_play:
                self.sound_ticks += 1
        return max_ticks

    def render_text(self, on: str = "#", off: str = ".") -> str:
        """Current framebuffer as text, one line per pixel row."""
        return "\n".join(
            "".join(on if p else off for p in row) for row in self.sys.fb.rows())
