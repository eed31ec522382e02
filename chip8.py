"""
CHIP-8 Core
============
Memory, register file and instruction decoder for the CHIP-8 virtual
machine.

Every instruction is a big-endian 16-bit word fetched from memory at PC.
Decoding switches on the top nibble; families 0x8, 0xE and 0xF select
their sub-case from the low nibble / low byte.  The decoder is pure: it
reads the CPU and memory and returns an immutable ``Instruction``.  All
state changes happen in ``system.Chip8System.tick``.
"""

from __future__ import annotations
import enum
from dataclasses import dataclass

# ---------------------------------------------------------------------------
#  Constants
# ---------------------------------------------------------------------------

MEM_SIZE      = 4096
PROGRAM_START = 0x200
MAX_PROGRAM   = MEM_SIZE - PROGRAM_START
FONT_START    = 0x000
FONT_GLYPH    = 5       # bytes per hex glyph
STACK_DEPTH   = 64
NUM_REGS      = 16
VF            = 0xF     # carry / borrow / collision flag register

ADDR_MASK  = 0x0FFF
INDEX_MASK = 0xFFFF

# Hex digit glyphs 0..F, 4x5 pixels each (high nibble of every byte)
FONT = bytes([
    0xF0, 0x90, 0x90, 0x90, 0xF0,  # 0
    0x20, 0x60, 0x20, 0x20, 0x70,  # 1
    0xF0, 0x10, 0xF0, 0x80, 0xF0,  # 2
    0xF0, 0x10, 0xF0, 0x10, 0xF0,  # 3
    0x90, 0x90, 0xF0, 0x10, 0x10,  # 4
    0xF0, 0x80, 0xF0, 0x10, 0xF0,  # 5
    0xF0, 0x80, 0xF0, 0x90, 0xF0,  # 6
    0xF0, 0x10, 0x20, 0x40, 0x40,  # 7
    0xF0, 0x90, 0xF0, 0x90, 0xF0,  # 8
    0xF0, 0x90, 0xF0, 0x10, 0xF0,  # 9
    0xF0, 0x90, 0xF0, 0x90, 0x90,  # A
    0xE0, 0x90, 0xE0, 0x90, 0xE0,  # B
    0xF0, 0x80, 0x80, 0x80, 0xF0,  # C
    0xE0, 0x90, 0x90, 0x90, 0xE0,  # D
    0xF0, 0x80, 0xF0, 0x80, 0xF0,  # E
    0xF0, 0x80, 0xF0, 0x80, 0x80,  # F
])

# ---------------------------------------------------------------------------
#  Errors
# ---------------------------------------------------------------------------

class Chip8Error(Exception):
    """Base for emulator faults."""
    pass

class BusFault(Chip8Error):
    def __init__(self, addr: int, message: str = ""):
        self.addr = addr
        super().__init__(message or f"Bus fault @ {addr:#06x}")

class StackFault(Chip8Error):
    pass

class RegisterFault(Chip8Error):
    pass

class RomLoadError(Chip8Error):
    pass

# ---------------------------------------------------------------------------
#  Memory
# ---------------------------------------------------------------------------

class Memory:
    """4 KiB byte-addressable RAM with the hex font preloaded at 0x000."""

    def __init__(self):
        self.mem = bytearray(MEM_SIZE)
        self.mem[FONT_START:FONT_START + len(FONT)] = FONT

    def _check_addr(self, addr: int, size: int = 1):
        if addr < 0 or addr + size > MEM_SIZE:
            raise BusFault(addr)

    def load(self, data: bytes | bytearray):
        """Copy a program image into memory starting at 0x200."""
        if len(data) > MAX_PROGRAM:
            raise RomLoadError(
                f"Program is {len(data)} bytes, only {MAX_PROGRAM} fit above "
                f"{PROGRAM_START:#05x}")
        self.mem[PROGRAM_START:PROGRAM_START + len(data)] = data

    def get_byte(self, addr: int) -> int:
        self._check_addr(addr)
        return self.mem[addr]

    def set(self, addr: int, value: int):
        self._check_addr(addr)
        self.mem[addr] = value & 0xFF

    def fetch_instruction_word(self, pc: int) -> int:
        """Big-endian opcode: byte at pc is the high half."""
        self._check_addr(pc, 2)
        return (self.mem[pc] << 8) | self.mem[pc + 1]

# ---------------------------------------------------------------------------
#  Instructions
# ---------------------------------------------------------------------------

class Op(enum.Enum):
    INVALID        = "????"
    CLEAR_SCREEN   = "00E0"
    RETURN         = "00EE"
    JUMP           = "1NNN"
    CALL           = "2NNN"
    SKIP_VX_EQ_NN  = "3XNN"
    SKIP_VX_NE_NN  = "4XNN"
    SKIP_VX_EQ_VY  = "5XY0"
    SET_VX_NN      = "6XNN"
    ADD_VX_NN      = "7XNN"
    VX_SET_VY      = "8XY0"
    VX_OR_VY       = "8XY1"
    VX_AND_VY      = "8XY2"
    VX_XOR_VY      = "8XY3"
    VX_ADD_VY      = "8XY4"
    VX_SUB_VY      = "8XY5"
    VX_SHR         = "8XY6"
    VX_SUBN_VY     = "8XY7"
    VX_SHL         = "8XYE"
    SKIP_VX_NE_VY  = "9XY0"
    SET_INDEX      = "ANNN"
    JUMP_V0        = "BNNN"
    RAND           = "CXNN"
    DRAW           = "DXYN"
    SKIP_KEY       = "EX9E"
    SKIP_NOT_KEY   = "EXA1"
    GET_DELAY      = "FX07"
    WAIT_KEY       = "FX0A"
    SET_DELAY      = "FX15"
    SET_SOUND      = "FX18"
    ADD_INDEX_VX   = "FX1E"
    SET_INDEX_FONT = "FX29"
    BCD            = "FX33"
    REG_DUMP       = "FX55"
    REG_LOAD       = "FX65"


@dataclass(frozen=True)
class Instruction:
    """A decoded opcode.  Fields not used by ``op`` stay 0."""
    op: Op
    raw: int
    x: int = 0      # VX register index
    y: int = 0      # VY register index
    n: int = 0      # 4-bit count
    nn: int = 0     # 8-bit immediate
    nnn: int = 0    # 12-bit address

    def __str__(self) -> str:
        if self.op is Op.INVALID:
            return f"INVALID({self.raw:#06x})"
        return f"{self.op.name}({self.raw:04X})"


# Sub-case tables for the families that select on low bits
_ALU_OPS = {
    0x0: Op.VX_SET_VY,
    0x1: Op.VX_OR_VY,
    0x2: Op.VX_AND_VY,
    0x3: Op.VX_XOR_VY,
    0x4: Op.VX_ADD_VY,
    0x5: Op.VX_SUB_VY,
    0x6: Op.VX_SHR,
    0x7: Op.VX_SUBN_VY,
    0xE: Op.VX_SHL,
}

_KEY_OPS = {
    0x9E: Op.SKIP_KEY,
    0xA1: Op.SKIP_NOT_KEY,
}

_MISC_OPS = {
    0x07: Op.GET_DELAY,
    0x0A: Op.WAIT_KEY,
    0x15: Op.SET_DELAY,
    0x18: Op.SET_SOUND,
    0x1E: Op.ADD_INDEX_VX,
    0x29: Op.SET_INDEX_FONT,
    0x33: Op.BCD,
    0x55: Op.REG_DUMP,
    0x65: Op.REG_LOAD,
}

# Families whose whole operand is X + NN
_XNN_OPS = {
    0x3: Op.SKIP_VX_EQ_NN,
    0x4: Op.SKIP_VX_NE_NN,
    0x6: Op.SET_VX_NN,
    0x7: Op.ADD_VX_NN,
    0xC: Op.RAND,
}

# ---------------------------------------------------------------------------
#  CPU state
# ---------------------------------------------------------------------------

class Cpu:
    """Program counter, call stack, V0..VF and the index register."""

    def __init__(self):
        self._reset_state()

    def _reset_state(self):
        self.pc: int = PROGRAM_START
        self.sp: int = 0
        self.stack: list[int] = [0] * STACK_DEPTH
        self.index: int = 0
        self.v: list[int] = [0] * NUM_REGS

    # -- Register access --

    def get_v(self, reg: int) -> int:
        if not 0 <= reg < NUM_REGS:
            raise RegisterFault(f"No register V{reg}")
        return self.v[reg]

    def set_v(self, reg: int, value: int):
        if not 0 <= reg < NUM_REGS:
            raise RegisterFault(f"No register V{reg}")
        self.v[reg] = value & 0xFF

    def set_index(self, addr: int):
        self.index = addr & INDEX_MASK

    # -- Program counter --

    def inc_pc(self):
        self.pc += 2

    def jump(self, addr: int):
        self.pc = addr

    def push_and_jump(self, addr: int):
        """Save the current pc and jump to a 12-bit target."""
        if self.sp >= STACK_DEPTH:
            raise StackFault(
                f"Call stack overflow at pc {self.pc:#05x} (depth {STACK_DEPTH})")
        self.stack[self.sp] = self.pc
        self.sp += 1
        self.pc = addr & ADDR_MASK

    def return_from_call(self):
        """Pop the calling instruction's address and resume after it."""
        if self.sp == 0:
            raise StackFault(f"Return with empty call stack at pc {self.pc:#05x}")
        self.sp -= 1
        self.pc = self.stack[self.sp] + 2

    # -- Fetch / decode --

    def fetch_decode(self, mem: Memory) -> Instruction:
        return decode(self, mem)


def decode(cpu: Cpu, mem: Memory) -> Instruction:
    """Classify the opcode at ``cpu.pc``.  Never mutates state."""
    opcode = mem.fetch_instruction_word(cpu.pc)
    family = (opcode >> 12) & 0xF
    x = (opcode >> 8) & 0xF
    y = (opcode >> 4) & 0xF
    n = opcode & 0xF
    nn = opcode & 0xFF
    nnn = opcode & ADDR_MASK

    if family == 0x0:
        if opcode == 0x00E0:
            return Instruction(Op.CLEAR_SCREEN, opcode)
        if opcode == 0x00EE:
            return Instruction(Op.RETURN, opcode)
        # 0NNN machine-code calls are not supported
        return Instruction(Op.INVALID, opcode)
    if family == 0x1:
        return Instruction(Op.JUMP, opcode, nnn=nnn)
    if family == 0x2:
        return Instruction(Op.CALL, opcode, nnn=nnn)
    if family in _XNN_OPS:
        return Instruction(_XNN_OPS[family], opcode, x=x, nn=nn)
    if family == 0x5:
        if n != 0:
            return Instruction(Op.INVALID, opcode)
        return Instruction(Op.SKIP_VX_EQ_VY, opcode, x=x, y=y)
    if family == 0x8:
        op = _ALU_OPS.get(n, Op.INVALID)
        if op is Op.INVALID:
            return Instruction(Op.INVALID, opcode)
        return Instruction(op, opcode, x=x, y=y)
    if family == 0x9:
        if n != 0:
            return Instruction(Op.INVALID, opcode)
        return Instruction(Op.SKIP_VX_NE_VY, opcode, x=x, y=y)
    if family == 0xA:
        return Instruction(Op.SET_INDEX, opcode, nnn=nnn)
    if family == 0xB:
        # The whole opcode is added before masking; the family nibble only
        # reaches bits 12+ so the result equals (V0 + NNN) & 0xFFF.
        return Instruction(Op.JUMP_V0, opcode,
                           nnn=(cpu.v[0] + opcode) & ADDR_MASK)
    if family == 0xD:
        return Instruction(Op.DRAW, opcode, x=x, y=y, n=n)
    if family == 0xE:
        op = _KEY_OPS.get(nn, Op.INVALID)
        if op is Op.INVALID:
            return Instruction(Op.INVALID, opcode)
        return Instruction(op, opcode, x=x)
    # family == 0xF
    op = _MISC_OPS.get(nn, Op.INVALID)
    if op is Op.INVALID:
        return Instruction(Op.INVALID, opcode)
    return Instruction(op, opcode, x=x)
