from array import array
import logging
import random

logger = logging.getLogger(__name__)

MEMORY_SIZE = 4096
PROGRAM_START = 0x200
MAX_PROGRAM_SIZE = MEMORY_SIZE - PROGRAM_START
FONT_START = 0x050
FONT_GLYPH_SIZE = 5
STACK_DEPTH = 16
NUM_REGISTERS = 16
NUM_KEYS = 16
DISPLAY_WIDTH = 64
DISPLAY_HEIGHT = 32

FONT = [0xF0, 0x90, 0x90, 0x90, 0xF0,  # 0
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
        0xF0, 0x80, 0xF0, 0x80, 0x80]  # F


class Chip8Exception(Exception):
    pass


class InvalidOpCodeException(Chip8Exception):
    pass


class ProgramTooLargeException(Chip8Exception, ValueError):
    pass


class InvalidKeyException(Chip8Exception, ValueError):
    pass


class StackOverflowException(Chip8Exception):
    pass


class StackUnderflowException(Chip8Exception):
    pass


class C8Computer:
    '''
    The CHIP-8 interpreter core.  Owns memory, registers, the call stack, both timers and the keypad.

    The display is not owned here.  The screen passed in only has to offer clear(), get_pixel(x, y) and
    flip_pixel(x, y); the core never keeps a copy of the pixels, so any backend can be swapped in.

    The host drives the machine: cycle() once per instruction at whatever rate it likes, tick() at 60 Hz,
    set_key() / reset_keys() when it polls input.
    '''

    def __init__(self, screen, rng=None, report_invalid_opcodes=False, increment_i_fx55_fx65=False,
                 shift_vy_8xy6_8xye=False, logic_resets_vf=False):
        self.screen = screen
        # Anything with a randrange(start, stop) method; tests hand in a fixed sequence.
        self.rng = rng if rng is not None else random.Random()
        # Unknown opcodes are always skipped.  When this is set they are also logged.
        self.report_invalid_opcodes = report_invalid_opcodes
        self.invalid_opcode_count = 0

        # Config options to cover differences between modern CHIP-8 interpreters and the original
        # COSMAC VIP.  False is the modern way; True matches original.
        self.increment_i_fx55_fx65 = increment_i_fx55_fx65
        self.shift_vy_8xy6_8xye = shift_vy_8xy6_8xye
        self.logic_resets_vf = logic_resets_vf

        # 4096 Bytes of RAM
        self.RAM = array('B', bytes(MEMORY_SIZE))
        # The 16 registers are named V0..VF
        self.V = array('B', bytes(NUM_REGISTERS))
        # Special-purpose 16-bit register; low 12 are used for an address
        self.I = 0
        self.PC = PROGRAM_START
        # Return addresses; SP is the number of slots in use
        self.stack = array('H', bytes(2 * STACK_DEPTH))
        self.SP = 0
        self.delay_register = 0
        self.sound_register = 0
        self.keys_pressed = [False] * NUM_KEYS  # used for the Ex9E and ExA1 instructions
        # Set while Fx0A is pending; key_wait_register is the x of that Fx0A.
        self.waiting_for_key = False
        self.key_wait_register = None
        self.draw_flag = False

        # Using a list of functions to speed the lookup, vs. doing a big nested
        # if/else.  There is one instruction for each of the high-order nibbles
        # 1, 2, 3, 4, 6, 7, A, B, C and D.  The others (0, 5, 8, 9, E, F) need
        # to look at more of the opcode.
        self.operation_list = [
            self._0_opcodes, self._1nnn, self._2nnn, self._3xkk, self._4xkk, self._5xy0,
            self._6xkk, self._7xkk, self._8_opcodes, self._9xy0, self._Annn, self._Bnnn,
            self._Cxkk, self._Dxyn, self._E_opcodes, self._F_opcodes
        ]

        # opcodes beginning with 8 can be determined based on the least-significant
        # nibble (0..7 and E)
        self._8_operations = [
            self._8xy0, self._8xy1, self._8xy2, self._8xy3, self._8xy4, self._8xy5,
            self._8xy6, self._8xy7, self.invalid_op, self.invalid_op,
            self.invalid_op, self.invalid_op, self.invalid_op, self.invalid_op,
            self._8xyE, self.invalid_op
        ]

        # opcodes beginning with F can be determined based on the least_significant
        # byte (07, 0A, 15, 18, 1E, 29, 33, 55, and 65).  Since this is sparse,
        # will use a dictionary.
        self._F_operations = {
            0x07: self._Fx07,
            0x0A: self._Fx0A,
            0x15: self._Fx15,
            0x18: self._Fx18,
            0x1E: self._Fx1E,
            0x29: self._Fx29,
            0x33: self._Fx33,
            0x55: self._Fx55,
            0x65: self._Fx65
        }

        self.reset()

    def reset(self):
        # Back to the power-on state.  Safe to call any number of times.
        for i in range(MEMORY_SIZE):
            self.RAM[i] = 0
        for i in range(NUM_REGISTERS):
            self.V[i] = 0
        for i in range(STACK_DEPTH):
            self.stack[i] = 0
        self.SP = 0
        self.I = 0
        self.PC = PROGRAM_START
        self.delay_register = 0
        self.sound_register = 0
        self.reset_keys()
        self.waiting_for_key = False
        self.key_wait_register = None
        self.load_font_sprites()
        self.screen.clear()
        self.draw_flag = False
        logger.debug("Machine reset")

    def load_font_sprites(self):
        '''
        Video in the CHIP-8 is sprite-driven.  Each sprite is 8 pixels wide, and from 1-15 pixels high.
        A font representing 0..9 + A..F is required for proper operation.  Example for the character 2:

                   ****....
                   ...*....
                   ****....
                   *.......
                   ****....

        The font has to live in RAM in range 0x000-0x1FF, which is reserved for the interpreter.  Most
        interpreters put it at 0x050, so that is where it goes here.
        '''
        for i, byte in enumerate(FONT):
            self.RAM[FONT_START + i] = byte

    def load_program(self, data):
        # Copies the program to 0x200.  Nothing else is touched, so callers normally reset() first.
        if len(data) > MAX_PROGRAM_SIZE:
            raise ProgramTooLargeException(
                "Program is {} bytes; at most {} fit above 0x200".format(len(data), MAX_PROGRAM_SIZE))
        for i, byte in enumerate(data):
            self.RAM[PROGRAM_START + i] = byte
        logger.debug("Loaded %d byte program at 0x200", len(data))

    def set_key(self, key, pressed):
        if not 0 <= key < NUM_KEYS:
            raise InvalidKeyException("Key index must be 0x0-0xF, got {!r}".format(key))
        self.keys_pressed[key] = bool(pressed)
        # A press, never a release, satisfies a pending Fx0A
        if pressed and self.waiting_for_key:
            self.V[self.key_wait_register] = key
            self.waiting_for_key = False
            self.key_wait_register = None
            self.PC += 2

    def reset_keys(self):
        for i in range(NUM_KEYS):
            self.keys_pressed[i] = False

    def tick(self):
        # Called by the host at 60 Hz, independent of how many instructions run per frame.
        if self.delay_register > 0:
            self.delay_register -= 1
        if self.sound_register > 0:
            self.sound_register -= 1

    def debug_dump(self, outfile):
        outfile.write("PC: 0x{:03X}\n".format(self.PC))
        outfile.write("Next instr.: 0x{:04X}\n".format(self.fetch()))
        outfile.write("I: 0x{:03X}\n".format(self.I))
        for i in range(NUM_REGISTERS):
            outfile.write("V{:X}: 0x{:02X}".format(i, self.V[i]))
            if i % 4 == 3:
                outfile.write('\n')
            else:
                outfile.write('\t')
        outfile.write("delay register: 0x{:02X}\n".format(self.delay_register))
        outfile.write("sound register: 0x{:02X}\n".format(self.sound_register))
        outfile.write("stack: [{}]\n".format(", ".join("0x{:03X}".format(self.stack[i]) for i in range(self.SP))))
        if self.waiting_for_key:
            outfile.write("waiting for key into V{:X}\n".format(self.key_wait_register))
        outfile.write("\n\nRAM:\n")
        for i in range(MEMORY_SIZE):
            if i % 32 == 0:
                outfile.write("0x{:03X} - 0x{:03X}:  ".format(i, i + 31))
            outfile.write("{:02X}".format(self.RAM[i]))
            if i % 32 == 31:
                outfile.write("\n")

    def read_byte(self, address):
        # Addresses past the end of RAM wrap around rather than escape the 4K space
        return self.RAM[address % MEMORY_SIZE]

    def write_byte(self, address, value):
        self.RAM[address % MEMORY_SIZE] = value

    def fetch(self):
        # Instructions are stored big-endian
        return self.read_byte(self.PC) << 8 | self.read_byte(self.PC + 1)

    def invalid_op(self, opcode, *args):
        raise InvalidOpCodeException(opcode)

    def _0_opcodes(self, opcode, vx, vy, n, kk, nnn):
        if opcode == 0x00E0:
            # 00E0 - CLS
            # clear the screen
            self.screen.clear()
            self.draw_flag = True
        elif opcode == 0x00EE:
            # 00EE - RET
            # Return from a subroutine.  The stack holds the address of the CALL itself,
            # so the normal increment moves past it.
            if self.SP == 0:
                raise StackUnderflowException("RET with an empty stack at 0x{:03X}".format(self.PC))
            self.SP -= 1
            self.PC = self.stack[self.SP]
        else:
            # 0nnn (SYS addr) is ignored by modern interpreters
            raise InvalidOpCodeException(opcode)
        return True

    def _1nnn(self, opcode, vx, vy, n, kk, nnn):
        # 1nnn - JP addr
        # Jump to location nnn
        self.PC = nnn
        return False

    def _2nnn(self, opcode, vx, vy, n, kk, nnn):
        # 2nnn - CALL addr
        # Call subroutine at nnn
        if self.SP >= STACK_DEPTH:
            raise StackOverflowException("CALL 0x{:03X} with a full stack at 0x{:03X}".format(nnn, self.PC))
        self.stack[self.SP] = self.PC
        self.SP += 1
        self.PC = nnn
        return False

    def _3xkk(self, opcode, vx, vy, n, kk, nnn):
        # 3xkk - SE Vx, byte
        # Skip next instruction if Vx == kk
        if self.V[vx] == kk:
            self.PC += 2
        return True

    def _4xkk(self, opcode, vx, vy, n, kk, nnn):
        # 4xkk - SNE Vx, byte
        # Skip next instruction if Vx != kk
        if self.V[vx] != kk:
            self.PC += 2
        return True

    def _5xy0(self, opcode, vx, vy, n, kk, nnn):
        # 5xy0 - SE Vx, Vy
        # Skip next instruction if Vx == Vy
        if n != 0:
            raise InvalidOpCodeException(opcode)
        if self.V[vx] == self.V[vy]:
            self.PC += 2
        return True

    def _6xkk(self, opcode, vx, vy, n, kk, nnn):
        # 6xkk - LD Vx, byte
        # Set Vx = kk
        self.V[vx] = kk
        return True

    def _7xkk(self, opcode, vx, vy, n, kk, nnn):
        # 7xkk - ADD Vx, byte
        # Add value in kk to vx, stores result in vx, does NOT set overflow flag
        self.V[vx] = (self.V[vx] + kk) & 0xFF
        return True

    def _8xy0(self, opcode, vx, vy):
        # 8xy0 - LD Vx, Vy
        # Set Vx = Vy
        self.V[vx] = self.V[vy]
        return True

    def _8xy1(self, opcode, vx, vy):
        # 8xy1 - OR Vx, Vy
        # Set Vx = Vx OR Vy.
        # Historical quirk: the COSMAC VIP also set VF = 0
        self.V[vx] = self.V[vx] | self.V[vy]
        if self.logic_resets_vf:
            self.V[0xF] = 0
        return True

    def _8xy2(self, opcode, vx, vy):
        # 8xy2 - AND Vx, Vy
        # Set Vx = Vx AND Vy
        # Historical quirk: the COSMAC VIP also set VF = 0
        self.V[vx] = self.V[vx] & self.V[vy]
        if self.logic_resets_vf:
            self.V[0xF] = 0
        return True

    def _8xy3(self, opcode, vx, vy):
        # 8xy3 - XOR Vx, Vy
        # Set Vx = Vx XOR Vy
        # Historical quirk: the COSMAC VIP also set VF = 0
        self.V[vx] = self.V[vx] ^ self.V[vy]
        if self.logic_resets_vf:
            self.V[0xF] = 0
        return True

    def _8xy4(self, opcode, vx, vy):
        # 8xy4 - ADD Vx, Vy
        # Set Vx = Vx + Vy, set VF = carry.  Must be done in this order.
        sum = self.V[vx] + self.V[vy]
        self.V[vx] = sum & 0xFF
        if sum > 255:
            self.V[0xF] = 1
        else:
            self.V[0xF] = 0
        return True

    def _8xy5(self, opcode, vx, vy):
        # 8xy5 - SUB Vx, Vy
        # Set Vx = Vx - Vy.  Set VF = NOT borrow (VF = 1 if Vx >= Vy)
        if self.V[vx] >= self.V[vy]:
            notborrow = 1
        else:
            notborrow = 0
        self.V[vx] = (self.V[vx] - self.V[vy]) & 0xFF
        self.V[0xF] = notborrow
        return True

    def _8xy6(self, opcode, vx, vy):
        # 8xy6 - SHR Vx, Vy
        # ORIGINAL IMPLEMENTATION: copy Vy into Vx, then shift Vx right by 1.
        # MODERN IMPLEMENTATION: shift Vx right by 1 in place
        # In both, VF is set to the least significant bit of Vx before the shift
        # See: https://tobiasvl.github.io/blog/write-a-chip-8-emulator/#8xy6-and-8xye-shift
        if self.shift_vy_8xy6_8xye:
            self.V[vx] = self.V[vy]
        lsb = self.V[vx] & 0x1
        self.V[vx] = self.V[vx] >> 1
        self.V[0xF] = lsb
        return True

    def _8xy7(self, opcode, vx, vy):
        # 8xy7 - SUBN Vx, Vy
        # Set Vx = Vy - Vx.  Set VF = NOT borrow (VF = 1 if Vy >= Vx)
        if self.V[vy] >= self.V[vx]:
            notborrow = 1
        else:
            notborrow = 0
        self.V[vx] = (self.V[vy] - self.V[vx]) & 0xFF
        self.V[0xF] = notborrow
        return True

    def _8xyE(self, opcode, vx, vy):
        # 8xyE - SHL Vx, Vy
        # ORIGINAL IMPLEMENTATION: copy Vy into Vx, then shift Vx left by 1.
        # MODERN IMPLEMENTATION: shift Vx left by 1 in place.
        # In both, VF is set to the most significant bit of Vx before the shift
        if self.shift_vy_8xy6_8xye:
            self.V[vx] = self.V[vy]
        msb = self.V[vx] & 0x80
        self.V[vx] = (self.V[vx] << 1) & 0xFF
        if msb:
            self.V[0xF] = 0x1
        else:
            self.V[0xF] = 0x0
        return True

    def _8_opcodes(self, opcode, vx, vy, n, kk, nnn):
        return self._8_operations[n](opcode, vx, vy)

    def _9xy0(self, opcode, vx, vy, n, kk, nnn):
        # 9xy0 - SNE Vx, Vy
        # Skip next instruction if Vx != Vy
        if n != 0:
            raise InvalidOpCodeException(opcode)
        if self.V[vx] != self.V[vy]:
            self.PC += 2
        return True

    def _Annn(self, opcode, vx, vy, n, kk, nnn):
        # Annn - LD I, addr
        # The value of register I is set to nnn
        self.I = nnn
        return True

    def _Bnnn(self, opcode, vx, vy, n, kk, nnn):
        # Bnnn - JP V0, addr
        # The program counter is set to nnn plus the value of V0, kept inside the 4K space
        self.PC = (nnn + self.V[0]) & 0xFFF
        return False

    def _Cxkk(self, opcode, vx, vy, n, kk, nnn):
        # Cxkk - RND Vx, byte
        # Set Vx = random byte AND kk
        self.V[vx] = self.rng.randrange(0, 256) & kk
        return True

    def _Dxyn(self, opcode, vx, vy, n, kk, nnn):
        # Dxyn - DRW Vx, Vy, nibble
        # XOR an n-row sprite from memory at I onto the screen at (Vx, Vy).  Pixels that run off
        # an edge wrap to the opposite one.  VF = 1 if any lit pixel was turned off.
        x = self.V[vx]
        y = self.V[vy]
        collision = 0
        for row in range(n):
            sprite_byte = self.read_byte(self.I + row)
            pixel_y = (y + row) % DISPLAY_HEIGHT
            for col in range(8):
                if (sprite_byte << col) & 0x80:
                    # 0 means do nothing, so only treat the 1 case
                    pixel_x = (x + col) % DISPLAY_WIDTH
                    if self.screen.get_pixel(pixel_x, pixel_y):
                        collision = 1
                    self.screen.flip_pixel(pixel_x, pixel_y)
        self.V[0xF] = collision
        self.draw_flag = True
        return True

    def _E_opcodes(self, opcode, vx, vy, n, kk, nnn):
        if kk == 0x9E:
            # Ex9E - SKP Vx
            # Skip next instruction if key with value of Vx is pressed
            if self.keys_pressed[self.V[vx] & 0xF]:
                self.PC += 2
        elif kk == 0xA1:
            # ExA1 - SKNP Vx
            # Skip next instruction if key with value of Vx is NOT pressed
            if not self.keys_pressed[self.V[vx] & 0xF]:
                self.PC += 2
        else:
            raise InvalidOpCodeException(opcode)
        return True

    def _Fx07(self, vx):
        # Fx07 - LD Vx, DT
        # The value of the Delay Timer is placed into Vx.
        self.V[vx] = self.delay_register
        return True

    def _Fx0A(self, vx):
        # Fx0A - LD, Vx, Key
        # Wait for a key press, store the value of the key in Vx.
        # cycle() does nothing until set_key() sees a press; set_key() then fills in Vx and moves PC on.
        self.waiting_for_key = True
        self.key_wait_register = vx
        return False

    def _Fx15(self, vx):
        # Fx15 - LD DT, Vx
        # Set Delay Timer = Vx
        self.delay_register = self.V[vx]
        return True

    def _Fx18(self, vx):
        # Fx18 - LD ST, Vx
        # Set Sound Timer = Vx
        self.sound_register = self.V[vx]
        return True

    def _Fx1E(self, vx):
        # Fx1E - Set I = I + Vx - do not set the overflow flag
        self.I = (self.I + self.V[vx]) & 0xFFFF
        return True

    def _Fx29(self, vx):
        # Fx29 - LD F, Vx
        # Set I = location of sprite for digit Vx ("F" = Font)
        # each character is 5 bytes; only the low nibble of Vx names a digit
        self.I = FONT_START + FONT_GLYPH_SIZE * (self.V[vx] & 0xF)
        return True

    def _Fx33(self, vx):
        # Fx33 - LD B, Vx
        # Store binary coded decimal value of Vx in memory locations I, I+1, I+2
        # Convert Vx to base 10, place the hundreds digit in I, tens digit in I+1, ones in I+2
        val = self.V[vx]
        self.write_byte(self.I, val // 100)
        self.write_byte(self.I + 1, (val // 10) % 10)
        self.write_byte(self.I + 2, val % 10)
        return True

    def _Fx55(self, vx):
        # Fx55 - LD[I], Vx
        # Store registers V0 through Vx in memory starting at location I
        # Note that in the original CHIP-8 on the COSMAC VIP, I was incremented during this
        # loop.  See: https://laurencescotford.com/chip-8-on-the-cosmac-vip-loading-and-saving-variables/
        # However, modern interpreters do not increment I.
        for i in range(vx + 1):
            self.write_byte(self.I + i, self.V[i])
        if self.increment_i_fx55_fx65:
            self.I = (self.I + vx + 1) & 0xFFFF
        return True

    def _Fx65(self, vx):
        # Fx65 - LD Vx, [I]
        # Read values from memory starting at location I into registers V0 through Vx
        for i in range(vx + 1):
            self.V[i] = self.read_byte(self.I + i)
        if self.increment_i_fx55_fx65:
            self.I = (self.I + vx + 1) & 0xFFFF
        return True

    def _F_opcodes(self, opcode, vx, vy, n, kk, nnn):
        if kk in self._F_operations:
            return self._F_operations[kk](vx)
        else:
            raise InvalidOpCodeException(opcode)

    def cycle(self):
        '''
        Fetch, decode and execute one instruction.  Does nothing while an Fx0A is waiting for a key.

        Instructions have one of 6 patterns:
        All 4 nibbles fixed:
            00E0, 00EE
        Operation + nnn (address)
            1nnn, 2nnn, Annn, Bnnn
        Operation + Vx + kk (byte)
            3xkk, 4xkk, 6xkk, 7xkk, Cxkk
        Operation + Vx + Vy + nibble-type
            5xy0, 8xy0, 8xy1, 8xy2, 8xy3,
            8xy4, 8xy5, 8xy6, 8xy7, 8xyE, 9xy0
        Operation + Vx + Vy + n (nibble)
            Dxyn
        Operation + Vx + byte-type
            Ex9E, ExA1, Fx07, Fx0A, Fx15,
            Fx18, Fx1E, Fx29, Fx33, Fx55,
            Fx65

        To minimize redundant code, calculate all the possible ways
        to parse the opcode and then later use only the ones that are needed.

        Unknown opcodes are skipped like any other 2-byte instruction.
        '''
        if self.waiting_for_key:
            return

        opcode = self.fetch()
        operation = opcode >> 12
        vx = opcode >> 8 & 0xF
        vy = opcode >> 4 & 0xF
        n = opcode & 0xF
        nnn = opcode & 0xFFF
        kk = opcode & 0xFF
        try:
            increment_pc = self.operation_list[operation](opcode, vx, vy, n, kk, nnn)
        except InvalidOpCodeException:
            self.invalid_opcode_count += 1
            if self.report_invalid_opcodes:
                logger.warning("Skipping invalid opcode 0x%04X at 0x%03X", opcode, self.PC)
            increment_pc = True
        if increment_pc:
            self.PC += 2
