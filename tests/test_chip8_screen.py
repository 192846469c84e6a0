import io

import pygame
import pytest

from chip8 import C8Computer
from chip8_screen import C8Screen, C8TextScreen, PIXEL_OFF, PIXEL_ON
from conftest import run


@pytest.fixture
def window():
    return pygame.Surface((64 * 2, 32 * 2))


@pytest.fixture
def updates(monkeypatch):
    calls = []
    monkeypatch.setattr(pygame.display, "update", lambda rects: calls.append(list(rects)))
    return calls


def test_screen_flip_and_clear(window):
    screen = C8Screen(window, scale=2)
    assert not screen.get_pixel(5, 6)
    screen.flip_pixel(5, 6)
    assert screen.get_pixel(5, 6)
    screen.flip_pixel(5, 6)
    assert not screen.get_pixel(5, 6)
    screen.flip_pixel(63, 31)
    screen.clear()
    assert not screen.get_pixel(63, 31)


def test_screen_first_draw_paints_everything(window, updates):
    screen = C8Screen(window, scale=2)
    screen.flip_pixel(1, 1)
    screen.draw()
    assert updates == [[pygame.Rect(0, 0, 128, 64)]]
    assert tuple(window.get_at((2, 2)))[:3] == PIXEL_ON
    assert tuple(window.get_at((0, 0)))[:3] == PIXEL_OFF
    assert screen.num_renders == 1


def test_screen_later_draws_only_touch_dirty_pixels(window, updates):
    screen = C8Screen(window, scale=2)
    screen.draw()
    screen.flip_pixel(10, 3)
    screen.flip_pixel(11, 3)
    screen.draw()
    assert updates[-1] == [pygame.Rect(20, 6, 2, 2), pygame.Rect(22, 6, 2, 2)]
    assert tuple(window.get_at((21, 7)))[:3] == PIXEL_ON
    screen.draw()
    assert updates[-1] == []


def test_interpreter_draws_through_pygame_screen(window):
    screen = C8Screen(window, scale=2)
    c8 = C8Computer(screen)
    c8.I = 0x50
    run(c8, 0xD015)
    assert screen.get_pixel(0, 0)
    assert not screen.get_pixel(1, 1)
    assert c8.V[0xF] == 0


def test_text_screen_renders_glyphs():
    screen = C8TextScreen(xsize=4, ysize=2)
    screen.flip_pixel(0, 0)
    screen.flip_pixel(3, 1)
    assert screen.get_pixel(3, 1)
    assert screen.render_text() == "█   \n   █"
    screen.clear()
    assert screen.render_text() == "    \n    "


def test_text_screen_draw_writes_frame():
    out = io.StringIO()
    screen = C8TextScreen(xsize=2, ysize=1, outfile=out)
    screen.flip_pixel(1, 0)
    screen.draw()
    assert out.getvalue() == " █\n"
    assert screen.num_renders == 1
