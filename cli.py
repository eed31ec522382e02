#!/usr/bin/env python3
"""
CHIP-8 Emulator CLI
====================
Command-line entry point for the CHIP-8 system emulator.

Provides:
  - ROM loading (fatal on failure)
  - Windowed run with keyboard and sound (pygame)
  - Headless run for a fixed tick budget, printing screen and registers
  - Instruction tracing through the logging module

Usage:
  python cli.py ROM [--scale N] [--hz N] [--seed N] [--mute]
                    [--headless] [--steps N] [--trace] [-v]
"""

from __future__ import annotations
import argparse
import logging
import sys

from chip8 import Chip8Error, RomLoadError
from system import Chip8System
from display import PIXEL_SIZE, TICK_HZ


def _configure_logging(verbose: int, trace: bool):
    if trace or verbose >= 2:
        level = logging.DEBUG
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )


def run_headless(sys_emu: Chip8System, steps: int) -> int:
    """Run without a window, then print the screen and machine state."""
    from display import HeadlessDisplay

    disp = HeadlessDisplay(sys_emu)
    try:
        disp.run(steps)
    except Chip8Error as e:
        print(f"Fault after {sys_emu.tick_count} ticks: {e}", file=sys.stderr)
        print(sys_emu.dump_state())
        return 1
    print(disp.render_text())
    print()
    print(f"{len(disp.snapshots)} redraws, sound on for {disp.sound_ticks} ticks")
    print(sys_emu.dump_state())
    return 0


def run_window(sys_emu: Chip8System, args) -> int:
    from display import Chip8Display

    disp = Chip8Display(sys_emu, scale=args.scale, hz=args.hz,
                        title=f"CHIP-8 - {args.rom}", sound=not args.mute)
    try:
        disp.run()
    except ImportError as e:
        print(f"[display] pygame not available: {e}", file=sys.stderr)
        print("[display] Install with: pip install pygame", file=sys.stderr)
        return 1
    except Chip8Error as e:
        print(f"Fault after {sys_emu.tick_count} ticks: {e}", file=sys.stderr)
        print(sys_emu.dump_state())
        return 1
    return 0


# ---------------------------------------------------------------------------
#  Main
# ---------------------------------------------------------------------------

def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="CHIP-8 Emulator",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="Examples:\n"
               "  python cli.py pong.ch8\n"
               "  python cli.py pong.ch8 --scale 10 --hz 500\n"
               "  python cli.py test.ch8 --headless --steps 5000\n"
               "\n"
               "The tick rate (--hz) also drives the delay and sound timers.\n"
    )
    parser.add_argument("rom", type=str,
                        help="Program image, loaded at 0x200")
    parser.add_argument("--scale", type=int, default=PIXEL_SIZE, metavar="N",
                        help=f"Window pixels per CHIP-8 pixel (default: {PIXEL_SIZE})")
    parser.add_argument("--hz", type=int, default=TICK_HZ, metavar="N",
                        help=f"Ticks per second, also the timer rate (default: {TICK_HZ})")
    parser.add_argument("--seed", type=int, default=None,
                        help="Seed for the CXNN random source")
    parser.add_argument("--mute", action="store_true",
                        help="Disable the sound timer tone")
    parser.add_argument("--headless", action="store_true",
                        help="Run without a window and print the final screen")
    parser.add_argument("--steps", type=int, default=1000, metavar="N",
                        help="Tick budget for --headless (default: 1000)")
    parser.add_argument("--trace", action="store_true",
                        help="Log every decoded instruction")
    parser.add_argument("-v", "--verbose", action="count", default=0,
                        help="More log output (-v info, -vv debug)")
    args = parser.parse_args(argv)

    _configure_logging(args.verbose, args.trace)

    sys_emu = Chip8System(seed=args.seed)
    sys_emu.trace = args.trace
    try:
        size = sys_emu.load_program_file(args.rom)
    except RomLoadError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    print(f"Loaded {size} bytes from '{args.rom}' at 0x200")

    if args.headless:
        return run_headless(sys_emu, args.steps)
    return run_window(sys_emu, args)


if __name__ == "__main__":
    sys.exit(main())
