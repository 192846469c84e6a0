import argparse
import datetime
import logging
from pathlib import Path
import sys

import pygame

from chip8 import C8Computer, Chip8Exception, DISPLAY_WIDTH, DISPLAY_HEIGHT
from chip8_screen import C8Screen, C8TextScreen, SCALE_FACTOR

logger = logging.getLogger(__name__)

# How many instructions to run each second.  Tweak this per ROM; most want somewhere around 500-1000.
INSTRUCTIONS_PER_SECOND = 600
# The delay and sound timers, and the frame loop, run at 60 Hz no matter the instruction speed
TIMER_HZ = 60
DEBUG_DUMP_FILE = "debug.txt"


# The keyboard layout for the CHIP-8 assumes:
#   1 2 3 C
#   4 5 6 D
#   7 8 9 E
#   A 0 B F
#
# We map this to the following keys on our keyboard:
#   1 2 3 4
#   Q W E R
#   A S D F
#   Z X C V

KEYMAPPING = {
    pygame.K_1: 0x01,
    pygame.K_2: 0x02,
    pygame.K_3: 0x03,
    pygame.K_4: 0x0C,
    pygame.K_q: 0x04,
    pygame.K_w: 0x05,
    pygame.K_e: 0x06,
    pygame.K_r: 0x0D,
    pygame.K_a: 0x07,
    pygame.K_s: 0x08,
    pygame.K_d: 0x09,
    pygame.K_f: 0x0E,
    pygame.K_z: 0x0A,
    pygame.K_x: 0x00,
    pygame.K_c: 0x0B,
    pygame.K_v: 0x0F
}


class EmptyRomException(Chip8Exception):
    pass


def read_rom(rom_file):
    # ROMs are raw bytes with no header; the .ch8 extension is only a convention
    path = Path(rom_file)
    if not path.is_file():
        raise FileNotFoundError("ROM file not found: {}".format(path))
    data = path.read_bytes()
    if not data:
        raise EmptyRomException("ROM file is empty: {}".format(path))
    logger.info("Read %d bytes from %s", len(data), path)
    return data


class PygameKeypad:
    # Feeds pygame keyboard events to the interpreter.  Closing the window stops the run.

    def __init__(self, keymapping=None):
        self.keymapping = KEYMAPPING if keymapping is None else keymapping
        self.running = True

    def handle_event(self, c8, event):
        if event.type == pygame.QUIT:
            self.running = False
        elif event.type == pygame.KEYDOWN:
            if event.key in self.keymapping:
                c8.set_key(self.keymapping[event.key], True)
        elif event.type == pygame.KEYUP:
            if event.key in self.keymapping:
                c8.set_key(self.keymapping[event.key], False)

    def process_input(self, c8):
        for event in pygame.event.get():
            self.handle_event(c8, event)


class HeadlessKeypad:
    # Never presses anything; stays running for a fixed number of polls.

    def __init__(self, frames):
        self.frames_left = frames

    @property
    def running(self):
        return self.frames_left > 0

    def process_input(self, c8):
        self.frames_left -= 1


class C8Oscillator:
    '''
    The host main loop.  Each pass is one 60 Hz frame: poll input, run a batch of instructions, tick the
    timers, and present the screen if anything was drawn.  pace() is called at the end of each frame to
    hold the loop to real time; headless runs leave it out and go as fast as they can.
    '''

    def __init__(self, c8, keypad, screen, instructions_per_second=INSTRUCTIONS_PER_SECOND, pace=None):
        self.c8 = c8
        self.keypad = keypad
        self.screen = screen
        self.instructions_per_frame = max(1, instructions_per_second // TIMER_HZ)
        self.pace = pace
        self.num_instr = 0
        self.num_frames = 0

    def run_frame(self):
        self.keypad.process_input(self.c8)
        for i in range(self.instructions_per_frame):
            self.c8.cycle()
            self.num_instr += 1
        self.c8.tick()
        if self.c8.draw_flag:
            self.screen.draw()
            self.c8.draw_flag = False
        self.num_frames += 1

    def run(self):
        start_time = datetime.datetime.now()
        while self.keypad.running:
            self.run_frame()
            if self.pace is not None:
                self.pace()
        duration = (datetime.datetime.now() - start_time).total_seconds()

        logger.info("Duration: %s sec.", duration)
        logger.info("Executed %d instructions over %d frames", self.num_instr, self.num_frames)
        if duration > 0:
            logger.info("Performance: %s instructions per second", self.num_instr / duration)
        logger.info("Screen num renders: %d", self.screen.num_renders)


def build_parser():
    parser = argparse.ArgumentParser(description="CHIP-8 interpreter")
    parser.add_argument("rom", help="Path to a CHIP-8 ROM (.ch8)")
    parser.add_argument("--speed", type=int, default=INSTRUCTIONS_PER_SECOND,
                        help="Instructions executed per second")
    parser.add_argument("--scale", type=int, default=SCALE_FACTOR, help="Window pixels per CHIP-8 pixel")
    parser.add_argument("--cosmac", action="store_true",
                        help="Behave like the original COSMAC VIP interpreter (turns on all quirks)")
    parser.add_argument("--increment-i", action="store_true", help="Fx55/Fx65 leave I past the last register")
    parser.add_argument("--shift-vy", action="store_true", help="8xy6/8xyE shift Vy into Vx")
    parser.add_argument("--logic-resets-vf", action="store_true", help="8xy1/8xy2/8xy3 set VF to 0")
    parser.add_argument("--report-invalid-opcodes", action="store_true",
                        help="Log a warning for every unknown opcode that is skipped")
    parser.add_argument("--headless", type=int, metavar="FRAMES",
                        help="Run FRAMES frames without a window and print the final screen")
    parser.add_argument("--dump", default=DEBUG_DUMP_FILE, help="Where to write the debug dump on exit")
    parser.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"], default="INFO",
                        help="Logging level")
    return parser


def build_computer(args, screen):
    return C8Computer(
        screen,
        report_invalid_opcodes=args.report_invalid_opcodes,
        increment_i_fx55_fx65=args.cosmac or args.increment_i,
        shift_vy_8xy6_8xye=args.cosmac or args.shift_vy,
        logic_resets_vf=args.cosmac or args.logic_resets_vf,
    )


def write_debug_dump(c8, path):
    with open(path, "w") as outfile:
        c8.debug_dump(outfile)
    logger.info("Wrote debug dump to %s", path)


def run_headless(args, rom, out=None):
    screen = C8TextScreen()
    c8 = build_computer(args, screen)
    c8.load_program(rom)
    oscillator = C8Oscillator(c8, HeadlessKeypad(args.headless), screen, args.speed)
    try:
        oscillator.run()
    except Exception:
        write_debug_dump(c8, args.dump)
        raise
    if out is None:
        out = sys.stdout
    out.write(screen.render_text() + "\n")
    return c8


def run_window(args, rom):
    pygame.init()
    window = pygame.display.set_mode((DISPLAY_WIDTH * args.scale, DISPLAY_HEIGHT * args.scale))
    pygame.display.set_caption("CHIP-8: {}".format(Path(args.rom).name))
    window.fill(0)

    screen = C8Screen(window, scale=args.scale)
    c8 = build_computer(args, screen)
    c8.load_program(rom)

    clock = pygame.time.Clock()
    oscillator = C8Oscillator(c8, PygameKeypad(), screen, args.speed, pace=lambda: clock.tick(TIMER_HZ))
    try:
        oscillator.run()
    except Exception:
        write_debug_dump(c8, args.dump)
        pygame.display.flip()
        raise
    finally:
        pygame.quit()
    write_debug_dump(c8, args.dump)
    return c8


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level),
                        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    rom = read_rom(args.rom)
    if args.headless is not None:
        run_headless(args, rom)
    else:
        run_window(args, rom)
    return 0


if __name__ == "__main__":
    sys.exit(main())
