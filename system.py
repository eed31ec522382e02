"""
CHIP-8 System Emulator
=======================
Wires together:
  - the CPU state and decoder (chip8.py)
  - 4 KiB of memory with the hex font preloaded
  - the framebuffer, delay timer and sound timer (devices.py)

``tick`` is the only unit of progress: one fetch/decode/execute followed
by one timer decrement.  The host decides how often to call it, and that
rate is also the timer rate.
"""

from __future__ import annotations
import logging
import random
from typing import Mapping, Optional

from chip8 import (
    Cpu, Memory, Instruction, Op, RomLoadError, VF, FONT_START, FONT_GLYPH,
    MAX_PROGRAM,
)
from devices import FrameBuffer, CountdownTimer, NUM_KEYS

log = logging.getLogger(__name__)


class Chip8System:
    """
    Complete CHIP-8 machine: CPU + memory + framebuffer + two timers.

    The system owns every piece of state and is the only thing that
    mutates it.  Randomness for CXNN comes from ``rng`` (or a
    ``random.Random`` seeded with ``seed``) so runs can be replayed.
    """

    def __init__(self, seed: Optional[int] = None,
                 rng: Optional[random.Random] = None):
        self.cpu = Cpu()
        self.mem = Memory()
        self.fb = FrameBuffer()
        self.delay_timer = CountdownTimer("Delay")
        self.sound_timer = CountdownTimer("Sound")
        self.rng = rng if rng is not None else random.Random(seed)

        self.tick_count: int = 0
        self.invalid_count: int = 0
        self.trace: bool = False

        # Flags from the most recent tick
        self.should_draw: bool = False
        self.should_play_sound: bool = False

        # Tick-time key snapshot, only valid inside tick()
        self._keys: Mapping = {}

        self._dispatch = {
            Op.INVALID:        self._exec_invalid,
            Op.CLEAR_SCREEN:   self._exec_clear,
            Op.RETURN:         self._exec_return,
            Op.JUMP:           self._exec_jump,
            Op.CALL:           self._exec_call,
            Op.SKIP_VX_EQ_NN:  self._exec_skip_eq_nn,
            Op.SKIP_VX_NE_NN:  self._exec_skip_ne_nn,
            Op.SKIP_VX_EQ_VY:  self._exec_skip_eq_vy,
            Op.SET_VX_NN:      self._exec_set_nn,
            Op.ADD_VX_NN:      self._exec_add_nn,
            Op.VX_SET_VY:      self._exec_alu,
            Op.VX_OR_VY:       self._exec_alu,
            Op.VX_AND_VY:      self._exec_alu,
            Op.VX_XOR_VY:      self._exec_alu,
            Op.VX_ADD_VY:      self._exec_alu,
            Op.VX_SUB_VY:      self._exec_alu,
            Op.VX_SHR:         self._exec_alu,
            Op.VX_SUBN_VY:     self._exec_alu,
            Op.VX_SHL:         self._exec_alu,
            Op.SKIP_VX_NE_VY:  self._exec_skip_ne_vy,
            Op.SET_INDEX:      self._exec_set_index,
            Op.JUMP_V0:        self._exec_jump,
            Op.RAND:           self._exec_rand,
            Op.DRAW:           self._exec_draw,
            Op.SKIP_KEY:       self._exec_skip_key,
            Op.SKIP_NOT_KEY:   self._exec_skip_key,
            Op.GET_DELAY:      self._exec_get_delay,
            Op.WAIT_KEY:       self._exec_wait_key,
            Op.SET_DELAY:      self._exec_set_delay,
            Op.SET_SOUND:      self._exec_set_sound,
            Op.ADD_INDEX_VX:   self._exec_add_index,
            Op.SET_INDEX_FONT: self._exec_set_index_font,
            Op.BCD:            self._exec_bcd,
            Op.REG_DUMP:       self._exec_reg_dump,
            Op.REG_LOAD:       self._exec_reg_load,
        }

    # -----------------------------------------------------------------
    #  Loading
    # -----------------------------------------------------------------

    def load_program(self, data: bytes | bytearray):
        """Place a raw program image at 0x200."""
        self.mem.load(data)

    def load_program_file(self, path: str):
        """Read a ROM file from disk and load it.  Raises RomLoadError."""
        try:
            with open(path, "rb") as f:
                data = f.read()
        except OSError as e:
            raise RomLoadError(f"Cannot read ROM '{path}': {e}") from e
        if len(data) > MAX_PROGRAM:
            raise RomLoadError(
                f"ROM '{path}' is {len(data)} bytes (max {MAX_PROGRAM})")
        self.load_program(data)
        log.info("Loaded %d bytes from %s", len(data), path)
        return len(data)

    def reset(self):
        """Power-cycle CPU, screen and timers.  Memory keeps the program."""
        self.cpu._reset_state()
        self.fb.reset()
        self.delay_timer.reset()
        self.sound_timer.reset()
        self.tick_count = 0
        self.invalid_count = 0
        self.should_draw = False
        self.should_play_sound = False

    # -----------------------------------------------------------------
    #  Tick
    # -----------------------------------------------------------------

    def tick(self, keys: Optional[Mapping] = None) -> tuple[bool, bool]:
        """One fetch/decode/execute, then one timer decrement.

        ``keys`` maps ``devices.Key`` (or 0..15) to pressed flags; keys
        absent from it are treated as released.

        Returns ``(should_draw, should_play_sound)``.
        """
        self._keys = keys or {}
        self.should_draw = False

        instr = self.cpu.fetch_decode(self.mem)
        if self.trace:
            log.debug("%03X: %s", self.cpu.pc, instr)
        self._dispatch[instr.op](instr)

        self.delay_timer.tick()
        self.should_play_sound = self.sound_timer.value == 1
        self.sound_timer.tick()

        self.tick_count += 1
        self._keys = {}
        return self.should_draw, self.should_play_sound

    def run(self, max_ticks: int, keys: Optional[Mapping] = None) -> int:
        """Tick ``max_ticks`` times with a fixed key snapshot.

        Returns how many of those ticks asked for a redraw.
        """
        draws = 0
        for _ in range(max_ticks):
            drew, _ = self.tick(keys)
            if drew:
                draws += 1
        return draws

    # -----------------------------------------------------------------
    #  Helpers
    # -----------------------------------------------------------------

    def _key_down(self, code: int) -> bool:
        try:
            return bool(self._keys[code])
        except KeyError:
            log.debug("Key %X not in snapshot, treating as released", code)
            return False

    def _skip_if(self, cond: bool):
        self.cpu.inc_pc()
        if cond:
            self.cpu.inc_pc()

    # -----------------------------------------------------------------
    #  Instruction handlers
    # -----------------------------------------------------------------

    def _exec_invalid(self, ins: Instruction):
        self.invalid_count += 1
        log.warning("Unknown opcode %#06x at pc %#05x", ins.raw, self.cpu.pc)
        self.cpu.inc_pc()

    def _exec_clear(self, ins: Instruction):
        self.cpu.inc_pc()
        self.fb.clear()
        self.should_draw = True

    def _exec_return(self, ins: Instruction):
        self.cpu.return_from_call()

    def _exec_jump(self, ins: Instruction):
        # JUMP and JUMP_V0: the decoder already resolved the target
        self.cpu.jump(ins.nnn)

    def _exec_call(self, ins: Instruction):
        self.cpu.push_and_jump(ins.nnn)

    def _exec_skip_eq_nn(self, ins: Instruction):
        self._skip_if(self.cpu.get_v(ins.x) == ins.nn)

    def _exec_skip_ne_nn(self, ins: Instruction):
        self._skip_if(self.cpu.get_v(ins.x) != ins.nn)

    def _exec_skip_eq_vy(self, ins: Instruction):
        self._skip_if(self.cpu.get_v(ins.x) == self.cpu.get_v(ins.y))

    def _exec_skip_ne_vy(self, ins: Instruction):
        self._skip_if(self.cpu.get_v(ins.x) != self.cpu.get_v(ins.y))

    def _exec_set_nn(self, ins: Instruction):
        self.cpu.inc_pc()
        self.cpu.set_v(ins.x, ins.nn)

    def _exec_add_nn(self, ins: Instruction):
        self.cpu.inc_pc()
        self.cpu.set_v(ins.x, self.cpu.get_v(ins.x) + ins.nn)

    def _exec_alu(self, ins: Instruction):
        """8XYn register/register arithmetic.

        VF is written before VX, so with X == F the result wins.
        """
        cpu = self.cpu
        cpu.inc_pc()
        a = cpu.get_v(ins.x)
        b = cpu.get_v(ins.y)
        op = ins.op

        if op is Op.VX_SET_VY:
            cpu.set_v(ins.x, b)
        elif op is Op.VX_OR_VY:
            cpu.set_v(ins.x, a | b)
        elif op is Op.VX_AND_VY:
            cpu.set_v(ins.x, a & b)
        elif op is Op.VX_XOR_VY:
            cpu.set_v(ins.x, a ^ b)
        elif op is Op.VX_ADD_VY:
            cpu.set_v(VF, 1 if a + b > 0xFF else 0)   # carry
            cpu.set_v(ins.x, a + b)
        elif op is Op.VX_SUB_VY:
            cpu.set_v(VF, 0 if b > a else 1)           # borrow
            cpu.set_v(ins.x, a - b)
        elif op is Op.VX_SUBN_VY:
            cpu.set_v(VF, 0 if a > b else 1)           # borrow
            cpu.set_v(ins.x, b - a)
        elif op is Op.VX_SHR:
            cpu.set_v(VF, a & 0x1)
            cpu.set_v(ins.x, a >> 1)
        elif op is Op.VX_SHL:
            # Tests bit 3, not bit 7
            cpu.set_v(VF, 1 if a & 0x8 else 0)
            cpu.set_v(ins.x, a << 1)

    def _exec_set_index(self, ins: Instruction):
        self.cpu.inc_pc()
        self.cpu.set_index(ins.nnn)

    def _exec_rand(self, ins: Instruction):
        self.cpu.inc_pc()
        self.cpu.set_v(ins.x, ins.nn & self.rng.getrandbits(8))

    def _exec_draw(self, ins: Instruction):
        cpu = self.cpu
        cpu.inc_pc()
        collided = self.fb.draw_sprite(cpu.get_v(ins.x), cpu.get_v(ins.y),
                                       ins.n, cpu.index, self.mem)
        cpu.set_v(VF, 1 if collided else 0)
        self.should_draw = True

    def _exec_skip_key(self, ins: Instruction):
        self.cpu.inc_pc()
        code = self.cpu.get_v(ins.x)
        if code >= NUM_KEYS:
            return
        down = self._key_down(code)
        if ins.op is Op.SKIP_NOT_KEY:
            down = not down
        if down:
            self.cpu.inc_pc()

    def _exec_wait_key(self, ins: Instruction):
        pressed = None
        for code in range(NUM_KEYS):
            if self._key_down(code):
                pressed = code      # highest pressed key wins
        if pressed is not None:
            self.cpu.set_v(ins.x, pressed)
            self.cpu.inc_pc()

    def _exec_get_delay(self, ins: Instruction):
        self.cpu.set_v(ins.x, self.delay_timer.value)
        self.cpu.inc_pc()

    def _exec_set_delay(self, ins: Instruction):
        self.delay_timer.set(self.cpu.get_v(ins.x))
        self.cpu.inc_pc()

    def _exec_set_sound(self, ins: Instruction):
        self.sound_timer.set(self.cpu.get_v(ins.x))
        self.cpu.inc_pc()

    def _exec_add_index(self, ins: Instruction):
        cpu = self.cpu
        total = cpu.get_v(ins.x) + cpu.index
        cpu.set_v(VF, 1 if total > 0xFFF else 0)
        cpu.set_index(total)
        cpu.inc_pc()

    def _exec_set_index_font(self, ins: Instruction):
        # Byte-wide multiply, as on the reference machine
        glyph = (self.cpu.get_v(ins.x) * FONT_GLYPH) & 0xFF
        self.cpu.set_index(FONT_START + glyph)
        self.cpu.inc_pc()

    def _exec_bcd(self, ins: Instruction):
        i = self.cpu.index
        vx = self.cpu.get_v(ins.x)
        self.mem.set(i, vx // 100)
        self.mem.set(i + 1, (vx // 10) % 10)
        self.mem.set(i + 2, vx % 10)
        self.cpu.inc_pc()

    def _exec_reg_dump(self, ins: Instruction):
        cpu = self.cpu
        for r in range(ins.x + 1):
            self.mem.set(cpu.index + r, cpu.get_v(r))
        cpu.set_index(cpu.index + ins.x + 1)
        cpu.inc_pc()

    def _exec_reg_load(self, ins: Instruction):
        cpu = self.cpu
        for r in range(ins.x + 1):
            cpu.set_v(r, self.mem.get_byte(cpu.index + r))
        cpu.set_index(cpu.index + ins.x + 1)
        cpu.inc_pc()

    # -----------------------------------------------------------------
    #  Convenience
    # -----------------------------------------------------------------

    def dump_state(self) -> str:
        """CPU + device state dump."""
        cpu = self.cpu
        lines = ["=== Registers ==="]
        for row in range(0, 16, 8):
            lines.append("  " + "  ".join(
                f"V{r:X}={cpu.v[r]:02X}" for r in range(row, row + 8)))
        lines.append(f"  PC={cpu.pc:03X}  I={cpu.index:04X}  SP={cpu.sp}")
        if cpu.sp:
            lines.append("  Stack: " + " ".join(
                f"{a:03X}" for a in cpu.stack[:cpu.sp]))
        lines.append("")
        lines.append("=== Devices ===")
        lines.append(f"  Delay: {self.delay_timer.value}  "
                     f"Sound: {self.sound_timer.value}")
        lines.append(f"  Screen: {self.fb.lit_count} pixels lit")
        lines.append(f"  Ticks: {self.tick_count}  "
                     f"Unknown opcodes: {self.invalid_count}")
        return "\n".join(lines)
