from array import array
import datetime

import pygame

from chip8 import DISPLAY_WIDTH, DISPLAY_HEIGHT

SCALE_FACTOR = 8
PIXEL_OFF = (0, 0, 0)
PIXEL_ON = (255, 255, 255)
TEXT_PIXEL_ON = "█"
TEXT_PIXEL_OFF = " "


class C8Screen:
    '''
    Pixel surface backed by a pygame window.  The interpreter flips pixels here; draw() paints only the
    pixels touched since the last draw and hands pygame the matching rectangles.
    '''

    def __init__(self, window, xsize=DISPLAY_WIDTH, ysize=DISPLAY_HEIGHT, scale=SCALE_FACTOR):
        self.xsize = xsize
        self.ysize = ysize
        self.scale = scale
        self.vram = array('B', bytes(self.xsize * self.ysize))
        self.window = window
        self.num_renders = 0
        self.render_time_ps = 0
        self.dirty = set()
        self.full_redraw = False
        self.clear()

    def clear(self):
        for i in range(self.xsize * self.ysize):
            self.vram[i] = 0
        self.dirty.clear()
        self.full_redraw = True

    def get_pixel(self, x, y):
        return self.vram[(y * self.xsize) + x] == 1

    def flip_pixel(self, x, y):
        vramcell = (y * self.xsize) + x
        self.vram[vramcell] ^= 1
        self.dirty.add((x, y))

    def _paint(self, x, y):
        if self.vram[(y * self.xsize) + x] == 0:
            color = PIXEL_OFF
        else:
            color = PIXEL_ON
        rect = pygame.Rect(x * self.scale, y * self.scale, self.scale, self.scale)
        self.window.fill(color, rect)
        return rect

    def draw(self):
        self.num_renders += 1
        start_time = datetime.datetime.now()
        if self.full_redraw:
            for y in range(self.ysize):
                for x in range(self.xsize):
                    self._paint(x, y)
            pygamerects = [pygame.Rect(0, 0, self.xsize * self.scale, self.ysize * self.scale)]
        else:
            pygamerects = [self._paint(x, y) for (x, y) in sorted(self.dirty)]
        pygame.display.update(pygamerects)
        self.full_redraw = False
        self.dirty.clear()
        self.render_time_ps += (datetime.datetime.now() - start_time).total_seconds()


class C8TextScreen:
    '''Pixel surface that renders to block characters, for terminals and headless runs.'''

    def __init__(self, xsize=DISPLAY_WIDTH, ysize=DISPLAY_HEIGHT, outfile=None):
        self.xsize = xsize
        self.ysize = ysize
        self.outfile = outfile
        self.num_renders = 0
        self.pixels = [[False] * xsize for _ in range(ysize)]

    def clear(self):
        for row in self.pixels:
            for x in range(self.xsize):
                row[x] = False

    def get_pixel(self, x, y):
        return self.pixels[y][x]

    def flip_pixel(self, x, y):
        self.pixels[y][x] = not self.pixels[y][x]

    def render_text(self):
        return "\n".join(
            "".join(TEXT_PIXEL_ON if lit else TEXT_PIXEL_OFF for lit in row) for row in self.pixels)

    def draw(self):
        self.num_renders += 1
        if self.outfile is not None:
            self.outfile.write(self.render_text() + "\n")
