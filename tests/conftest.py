import pytest

from chip8 import C8Computer, PROGRAM_START


class RecordingScreen:
    # Display stand-in: remembers lit pixels and every call the interpreter makes.

    def __init__(self):
        self.lit = set()
        self.calls = []

    def clear(self):
        self.calls.append(("clear",))
        self.lit.clear()

    def get_pixel(self, x, y):
        self.calls.append(("get_pixel", x, y))
        return (x, y) in self.lit

    def flip_pixel(self, x, y):
        self.calls.append(("flip_pixel", x, y))
        self.lit ^= {(x, y)}

    def count(self, name):
        return sum(1 for call in self.calls if call[0] == name)


class FixedRandom:
    # Hands back the given values in order from randrange().

    def __init__(self, values):
        self.values = list(values)

    def randrange(self, start, stop):
        return self.values.pop(0)


@pytest.fixture
def screen():
    return RecordingScreen()


@pytest.fixture
def c8(screen):
    return C8Computer(screen)


def load(c8, *opcodes, address=PROGRAM_START):
    # Write 16-bit instruction words into memory, big-endian
    for opcode in opcodes:
        c8.RAM[address] = opcode >> 8
        c8.RAM[address + 1] = opcode & 0xFF
        address += 2


def run(c8, *opcodes):
    # Load the words at PC and execute exactly that many cycles
    load(c8, *opcodes, address=c8.PC)
    for _ in opcodes:
        c8.cycle()
