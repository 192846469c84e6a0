import pygame
import pytest

from chip8 import C8Computer, StackUnderflowException
from chip8_host import (C8Oscillator, EmptyRomException, HeadlessKeypad, KEYMAPPING, PygameKeypad,
                        main, read_rom)
from chip8_screen import C8TextScreen
from conftest import load

# CLS; I = glyph "0"; V0 = 0; V1 = 0; DRW V0, V1, 5; JP to self
DRAW_ZERO_ROM = bytes([0x00, 0xE0, 0xA0, 0x50, 0x60, 0x00, 0x61, 0x00, 0xD0, 0x15, 0x12, 0x0A])


def test_keymapping_layout():
    rows = [
        [pygame.K_1, pygame.K_2, pygame.K_3, pygame.K_4],
        [pygame.K_q, pygame.K_w, pygame.K_e, pygame.K_r],
        [pygame.K_a, pygame.K_s, pygame.K_d, pygame.K_f],
        [pygame.K_z, pygame.K_x, pygame.K_c, pygame.K_v],
    ]
    assert [[KEYMAPPING[k] for k in row] for row in rows] == [
        [0x1, 0x2, 0x3, 0xC],
        [0x4, 0x5, 0x6, 0xD],
        [0x7, 0x8, 0x9, 0xE],
        [0xA, 0x0, 0xB, 0xF],
    ]
    assert sorted(KEYMAPPING.values()) == list(range(16))


def test_read_rom(tmp_path):
    rom = tmp_path / "game.ch8"
    rom.write_bytes(DRAW_ZERO_ROM)
    assert read_rom(rom) == DRAW_ZERO_ROM
    assert read_rom(str(rom)) == DRAW_ZERO_ROM


def test_read_rom_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        read_rom(tmp_path / "nope.ch8")


def test_read_rom_empty(tmp_path):
    rom = tmp_path / "empty.ch8"
    rom.write_bytes(b"")
    with pytest.raises(EmptyRomException):
        read_rom(rom)


def test_pygame_keypad_events(c8):
    keypad = PygameKeypad()
    keypad.handle_event(c8, pygame.event.Event(pygame.KEYDOWN, key=pygame.K_v))
    assert c8.keys_pressed[0xF]
    keypad.handle_event(c8, pygame.event.Event(pygame.KEYDOWN, key=pygame.K_SPACE))
    keypad.handle_event(c8, pygame.event.Event(pygame.KEYUP, key=pygame.K_v))
    assert c8.keys_pressed == [False] * 16
    assert keypad.running
    keypad.handle_event(c8, pygame.event.Event(pygame.QUIT))
    assert not keypad.running


def test_pygame_keypad_resolves_key_wait(c8):
    load(c8, 0xF30A)
    c8.cycle()
    PygameKeypad().handle_event(c8, pygame.event.Event(pygame.KEYDOWN, key=pygame.K_x))
    assert not c8.waiting_for_key
    assert c8.V[3] == 0x0
    assert c8.PC == 0x202


def test_headless_keypad_counts_down(c8):
    keypad = HeadlessKeypad(2)
    assert keypad.running
    keypad.process_input(c8)
    keypad.process_input(c8)
    assert not keypad.running


def test_oscillator_runs_frames():
    screen = C8TextScreen()
    c8 = C8Computer(screen)
    c8.load_program(DRAW_ZERO_ROM)
    c8.delay_register = 10
    paced = []
    oscillator = C8Oscillator(c8, HeadlessKeypad(3), screen, instructions_per_second=600,
                              pace=lambda: paced.append(1))
    oscillator.run()
    assert oscillator.instructions_per_frame == 10
    assert oscillator.num_instr == 30
    assert oscillator.num_frames == 3
    assert len(paced) == 3
    assert c8.delay_register == 7
    # Only the first frame draws anything
    assert screen.num_renders == 1
    assert not c8.draw_flag
    assert screen.get_pixel(0, 0)


def test_oscillator_minimum_one_instruction_per_frame(c8, screen):
    oscillator = C8Oscillator(c8, HeadlessKeypad(1), screen, instructions_per_second=10)
    assert oscillator.instructions_per_frame == 1


def test_main_headless_prints_final_frame(tmp_path, capsys):
    rom = tmp_path / "zero.ch8"
    rom.write_bytes(DRAW_ZERO_ROM)
    assert main([str(rom), "--headless", "2", "--dump", str(tmp_path / "debug.txt")]) == 0
    lines = capsys.readouterr().out.splitlines()
    assert len(lines) == 32
    assert lines[0].rstrip() == "████"
    assert lines[1].rstrip() == "█  █"
    assert lines[4].rstrip() == "████"
    assert lines[5].strip() == ""


def test_main_headless_dumps_state_on_error(tmp_path):
    rom = tmp_path / "bad.ch8"
    rom.write_bytes(bytes([0x00, 0xEE]))
    dump = tmp_path / "debug.txt"
    with pytest.raises(StackUnderflowException):
        main([str(rom), "--headless", "1", "--dump", str(dump)])
    assert "PC: 0x200" in dump.read_text()
