"""
CHIP-8 Peripheral / Device Layer
=================================
The devices the execution engine drives besides memory:

  FrameBuffer     : 64x32 monochrome pixel grid, XOR sprite blitter
  CountdownTimer  : 8-bit timer decremented once per tick (delay, sound)
  Key             : the 16 hex keypad codes, independent of any toolkit

Devices only change state when ``system.Chip8System.tick`` asks them to.
"""

from __future__ import annotations
import enum
from typing import Mapping, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from chip8 import Memory

# ---------------------------------------------------------------------------
#  Geometry
# ---------------------------------------------------------------------------

SCREEN_WIDTH  = 64
SCREEN_HEIGHT = 32
SPRITE_WIDTH  = 8


# ---------------------------------------------------------------------------
#  Device base class
# ---------------------------------------------------------------------------

class Device:
    """Abstract peripheral."""

    def __init__(self, name: str):
        self.name = name

    def reset(self):
        """Return the device to its power-on state."""
        pass

    def tick(self):
        """Advance the device by one emulator tick. Override for timers."""
        pass


# ---------------------------------------------------------------------------
#  FrameBuffer
# ---------------------------------------------------------------------------
# Pixel (x, y) lives at pixels[x + y * SCREEN_WIDTH] and is 0 or 1.
# Sprites are 8 pixels wide, one byte per row, most significant bit on
# the left.  Both the origin and every row/column wrap around the edges.

class FrameBuffer(Device):
    """Monochrome display memory."""

    def __init__(self, width: int = SCREEN_WIDTH, height: int = SCREEN_HEIGHT):
        super().__init__("FrameBuffer")
        self.width = width
        self.height = height
        self.pixels = bytearray(width * height)

    def reset(self):
        self.clear()

    def clear(self):
        for i in range(len(self.pixels)):
            self.pixels[i] = 0

    def draw_sprite(self, x: int, y: int, height: int, addr: int,
                    mem: "Memory") -> bool:
        """XOR ``height`` sprite rows from ``mem[addr..]`` onto the grid.

        Returns True if any lit pixel was switched off (collision).
        """
        collided = False
        for row in range(height):
            bits = mem.get_byte(addr + row)
            py = (y + row) % self.height
            for col in range(SPRITE_WIDTH):
                if bits & (0x80 >> col):
                    px = (x + col) % self.width
                    i = px + py * self.width
                    if self.pixels[i] == 1:
                        collided = True
                    self.pixels[i] ^= 1
        return collided

    def get_pixel(self, x: int, y: int) -> int:
        return self.pixels[(x % self.width) + (y % self.height) * self.width]

    def rows(self) -> list[bytes]:
        """Pixel rows top to bottom, one byte per pixel."""
        w = self.width
        return [bytes(self.pixels[r * w:(r + 1) * w]) for r in range(self.height)]

    def snapshot(self) -> bytes:
        return bytes(self.pixels)

    @property
    def lit_count(self) -> int:
        return sum(self.pixels)


# ---------------------------------------------------------------------------
#  Countdown timer
# ---------------------------------------------------------------------------

class CountdownTimer(Device):
    """8-bit down counter, decremented by one per tick while non-zero.

    The tick rate is whatever rate the host calls ``Chip8System.tick``
    at; there is no wall clock in here.
    """

    def __init__(self, name: str):
        super().__init__(name)
        self.value: int = 0

    def reset(self):
        self.value = 0

    def set(self, value: int):
        self.value = value & 0xFF

    def tick(self):
        if self.value > 0:
            self.value -= 1

    @property
    def active(self) -> bool:
        return self.value > 0


# ---------------------------------------------------------------------------
#  Keypad
# ---------------------------------------------------------------------------
# 4x4 hex keypad as laid out on the original hardware:
#
#     1 2 3 C
#     4 5 6 D
#     7 8 9 E
#     A 0 B F

class Key(enum.IntEnum):
    K0 = 0x0
    K1 = 0x1
    K2 = 0x2
    K3 = 0x3
    K4 = 0x4
    K5 = 0x5
    K6 = 0x6
    K7 = 0x7
    K8 = 0x8
    K9 = 0x9
    KA = 0xA
    KB = 0xB
    KC = 0xC
    KD = 0xD
    KE = 0xE
    KF = 0xF


NUM_KEYS = len(Key)


def key_snapshot(pressed: Optional[Mapping] = None) -> dict[Key, bool]:
    """Build a full 16-entry snapshot; keys not mentioned are released.

    ``pressed`` may be keyed by ``Key`` or plain ints 0..15 and may hold
    bools or 0/1 ints.
    """
    snap = {k: False for k in Key}
    if pressed:
        for k, down in pressed.items():
            snap[Key(k)] = bool(down)
    return snap
