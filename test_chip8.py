"""
CHIP-8 Core Test Suite
=======================
Memory, CPU state and the instruction decoder.
"""

import unittest

from chip8 import (
    Memory, Cpu, Instruction, Op, decode, FONT, MEM_SIZE, PROGRAM_START,
    STACK_DEPTH, MAX_PROGRAM, BusFault, StackFault, RegisterFault,
    RomLoadError,
)


def decode_word(opcode: int, v0: int = 0) -> Instruction:
    """Decode a single opcode placed at 0x200."""
    mem = Memory()
    mem.load(bytes([(opcode >> 8) & 0xFF, opcode & 0xFF]))
    cpu = Cpu()
    cpu.v[0] = v0
    return decode(cpu, mem)


# ---------------------------------------------------------------------------
#  Memory
# ---------------------------------------------------------------------------

class TestMemory(unittest.TestCase):
    def test_font_preloaded(self):
        mem = Memory()
        self.assertEqual(bytes(mem.mem[:len(FONT)]), FONT)
        self.assertEqual(len(FONT), 80)
        self.assertEqual(mem.get_byte(0), 0xF0)       # "0" top row
        self.assertEqual(mem.get_byte(5), 0x20)       # "1" top row
        self.assertEqual(mem.get_byte(75), 0xF0)      # "F" top row

    def test_load_at_program_start(self):
        mem = Memory()
        mem.load(b"\x12\x34\x56")
        self.assertEqual(mem.get_byte(PROGRAM_START), 0x12)
        self.assertEqual(mem.get_byte(PROGRAM_START + 2), 0x56)
        self.assertEqual(mem.get_byte(PROGRAM_START - 1), 0)

    def test_fetch_word_big_endian(self):
        mem = Memory()
        mem.load(b"\xA2\xF0")
        self.assertEqual(mem.fetch_instruction_word(PROGRAM_START), 0xA2F0)

    def test_set_masks_to_byte(self):
        mem = Memory()
        mem.set(0x300, 0x1FF)
        self.assertEqual(mem.get_byte(0x300), 0xFF)

    def test_out_of_range(self):
        mem = Memory()
        with self.assertRaises(BusFault):
            mem.get_byte(MEM_SIZE)
        with self.assertRaises(BusFault):
            mem.get_byte(-1)
        with self.assertRaises(BusFault):
            mem.set(MEM_SIZE, 0)
        # Second byte of the word would be past the end
        with self.assertRaises(BusFault):
            mem.fetch_instruction_word(MEM_SIZE - 1)

    def test_load_fills_memory_exactly(self):
        mem = Memory()
        mem.load(bytes([0xAB]) * MAX_PROGRAM)
        self.assertEqual(mem.get_byte(MEM_SIZE - 1), 0xAB)

    def test_load_too_large(self):
        mem = Memory()
        with self.assertRaises(RomLoadError):
            mem.load(bytes(MAX_PROGRAM + 1))


# ---------------------------------------------------------------------------
#  CPU state
# ---------------------------------------------------------------------------

class TestCpuState(unittest.TestCase):
    def test_reset_state(self):
        cpu = Cpu()
        self.assertEqual(cpu.pc, 0x200)
        self.assertEqual(cpu.sp, 0)
        self.assertEqual(cpu.index, 0)
        self.assertEqual(cpu.v, [0] * 16)
        self.assertEqual(len(cpu.stack), STACK_DEPTH)

    def test_set_v_wraps_to_byte(self):
        cpu = Cpu()
        cpu.set_v(3, 0x1FE)
        self.assertEqual(cpu.get_v(3), 0xFE)
        cpu.set_v(4, -1)
        self.assertEqual(cpu.get_v(4), 0xFF)

    def test_bad_register_index(self):
        cpu = Cpu()
        with self.assertRaises(RegisterFault):
            cpu.get_v(16)
        with self.assertRaises(RegisterFault):
            cpu.set_v(-1, 0)

    def test_call_and_return(self):
        cpu = Cpu()
        cpu.push_and_jump(0x456)
        self.assertEqual(cpu.pc, 0x456)
        self.assertEqual(cpu.sp, 1)
        self.assertEqual(cpu.stack[0], 0x200)
        cpu.return_from_call()
        self.assertEqual(cpu.pc, 0x202)
        self.assertEqual(cpu.sp, 0)

    def test_call_masks_target(self):
        cpu = Cpu()
        cpu.push_and_jump(0x1234)
        self.assertEqual(cpu.pc, 0x234)

    def test_stack_overflow(self):
        cpu = Cpu()
        for _ in range(STACK_DEPTH):
            cpu.push_and_jump(0x300)
        self.assertEqual(cpu.sp, STACK_DEPTH)
        with self.assertRaises(StackFault):
            cpu.push_and_jump(0x300)
        # Nothing changed on the failed call
        self.assertEqual(cpu.sp, STACK_DEPTH)
        self.assertEqual(cpu.pc, 0x300)

    def test_stack_underflow(self):
        cpu = Cpu()
        with self.assertRaises(StackFault):
            cpu.return_from_call()
        self.assertEqual(cpu.pc, 0x200)

    def test_index_is_16_bit(self):
        cpu = Cpu()
        cpu.set_index(0x1FFFF)
        self.assertEqual(cpu.index, 0xFFFF)


# ---------------------------------------------------------------------------
#  Decoder
# ---------------------------------------------------------------------------

class TestDecoder(unittest.TestCase):
    def assertDecodes(self, opcode, op, **fields):
        ins = decode_word(opcode)
        self.assertIs(ins.op, op, f"{opcode:#06x}")
        self.assertEqual(ins.raw, opcode)
        for name, value in fields.items():
            self.assertEqual(getattr(ins, name), value,
                             f"{opcode:#06x}.{name}")

    def test_system_family(self):
        self.assertDecodes(0x00E0, Op.CLEAR_SCREEN)
        self.assertDecodes(0x00EE, Op.RETURN)

    def test_flow(self):
        self.assertDecodes(0x1ABC, Op.JUMP, nnn=0xABC)
        self.assertDecodes(0x2DEF, Op.CALL, nnn=0xDEF)

    def test_immediate_forms(self):
        self.assertDecodes(0x3A42, Op.SKIP_VX_EQ_NN, x=0xA, nn=0x42)
        self.assertDecodes(0x4B17, Op.SKIP_VX_NE_NN, x=0xB, nn=0x17)
        self.assertDecodes(0x6CFF, Op.SET_VX_NN, x=0xC, nn=0xFF)
        self.assertDecodes(0x7D01, Op.ADD_VX_NN, x=0xD, nn=0x01)
        self.assertDecodes(0xC30F, Op.RAND, x=0x3, nn=0x0F)

    def test_register_compares(self):
        self.assertDecodes(0x5120, Op.SKIP_VX_EQ_VY, x=1, y=2)
        self.assertDecodes(0x9340, Op.SKIP_VX_NE_VY, x=3, y=4)

    def test_alu_family(self):
        cases = {
            0x0: Op.VX_SET_VY, 0x1: Op.VX_OR_VY, 0x2: Op.VX_AND_VY,
            0x3: Op.VX_XOR_VY, 0x4: Op.VX_ADD_VY, 0x5: Op.VX_SUB_VY,
            0x6: Op.VX_SHR, 0x7: Op.VX_SUBN_VY, 0xE: Op.VX_SHL,
        }
        for sub, op in cases.items():
            self.assertDecodes(0x8560 | sub, op, x=5, y=6)

    def test_index_and_draw(self):
        self.assertDecodes(0xA123, Op.SET_INDEX, nnn=0x123)
        self.assertDecodes(0xD12F, Op.DRAW, x=1, y=2, n=0xF)
        self.assertDecodes(0xD340, Op.DRAW, x=3, y=4, n=0)

    def test_key_family(self):
        self.assertDecodes(0xE59E, Op.SKIP_KEY, x=5)
        self.assertDecodes(0xE6A1, Op.SKIP_NOT_KEY, x=6)

    def test_misc_family(self):
        cases = {
            0x07: Op.GET_DELAY, 0x0A: Op.WAIT_KEY, 0x15: Op.SET_DELAY,
            0x18: Op.SET_SOUND, 0x1E: Op.ADD_INDEX_VX,
            0x29: Op.SET_INDEX_FONT, 0x33: Op.BCD, 0x55: Op.REG_DUMP,
            0x65: Op.REG_LOAD,
        }
        for sub, op in cases.items():
            self.assertDecodes(0xF700 | sub, op, x=7)

    def test_jump_v0_resolves_target(self):
        ins = decode_word(0xB300, v0=0x10)
        self.assertIs(ins.op, Op.JUMP_V0)
        self.assertEqual(ins.nnn, 0x310)
        # Wraps within 12 bits like (V0 + NNN) & 0xFFF
        ins = decode_word(0xBFFF, v0=0xFF)
        self.assertEqual(ins.nnn, (0xFF + 0xFFF) & 0xFFF)

    def test_invalid_patterns(self):
        for opcode in (0x0000, 0x0123, 0x00E1, 0x5121, 0x8128, 0x812F,
                       0x912A, 0xE19F, 0xE100, 0xF100, 0xF1FF, 0xF166):
            ins = decode_word(opcode)
            self.assertIs(ins.op, Op.INVALID, f"{opcode:#06x}")
            self.assertEqual(ins.raw, opcode)

    def test_decode_is_pure(self):
        mem = Memory()
        mem.load(b"\x22\x08")
        cpu = Cpu()
        first = decode(cpu, mem)
        second = cpu.fetch_decode(mem)
        self.assertEqual(first, second)
        self.assertEqual(cpu.pc, 0x200)
        self.assertEqual(cpu.sp, 0)

    def test_instruction_immutable(self):
        ins = decode_word(0x6001)
        with self.assertRaises(AttributeError):
            ins.nn = 5

    def test_str(self):
        self.assertEqual(str(decode_word(0x6A05)), "SET_VX_NN(6A05)")
        self.assertEqual(str(decode_word(0xFFFF)), "INVALID(0xffff)")


if __name__ == "__main__":
    unittest.main()
