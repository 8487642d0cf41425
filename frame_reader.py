import logging
from dataclasses import dataclass, field

import cv2
import numpy as np

import config
from actions import Direction

logger = logging.getLogger(__name__)

_MASK64 = (1 << 64) - 1


def _to_signed64(value):
    value &= _MASK64
    if value >= 1 << 63:
        value -= 1 << 64
    return value


def _fold(values, seed=None, multiplier=None):
    h = config.SIGNATURE_SEED if seed is None else seed
    mult = config.SIGNATURE_MULTIPLIER if multiplier is None else multiplier
    for value in values:
        h = (h * mult + int(value)) & _MASK64
    return _to_signed64(h)


def _pack_quantized(samples):
    quant = samples.astype(np.int64) // config.SIGNATURE_QUANTIZATION
    packed = (quant[..., 0] << 10) + (quant[..., 1] << 5) + quant[..., 2]
    return packed.ravel().tolist()


def _brightness(pixels):
    return pixels.astype(np.int32).sum(axis=2) // 3


def normalize_frame(frame, width=None, height=None):
    width = width or config.GAME_WIDTH
    height = height or config.GAME_HEIGHT

    if not isinstance(frame, np.ndarray) or frame.ndim not in (2, 3) or frame.size == 0:
        raise ValueError("Frame must be a non-empty image array")

    if frame.dtype != np.uint8:
        frame = np.clip(frame, 0, 255).astype(np.uint8)

    if frame.ndim == 2:
        frame = cv2.cvtColor(frame, cv2.COLOR_GRAY2RGB)
    elif frame.shape[2] == 4:
        frame = frame[:, :, :3]
    elif frame.shape[2] != 3:
        raise ValueError(f"Unsupported channel count: {frame.shape[2]}")

    if frame.shape[0] != height or frame.shape[1] != width:
        frame = cv2.resize(frame, (width, height), interpolation=cv2.INTER_NEAREST)

    return np.ascontiguousarray(frame)


def tile_signature(pixels):
    size = min(pixels.shape[0], pixels.shape[1])
    step = max(1, size // config.TILE_SAMPLES_PER_AXIS)
    samples = pixels[::step, ::step]
    return _fold(_pack_quantized(samples))


def frame_signature(frame):
    stride = config.FRAME_SIGNATURE_STRIDE
    return _fold(_pack_quantized(frame[::stride, ::stride]))


def perceptual_hash(pixels):
    size = config.PERCEPTUAL_HASH_SIZE
    small = cv2.resize(pixels, (size, size), interpolation=cv2.INTER_AREA)
    gray = small.astype(np.float64)
    if gray.ndim == 3:
        gray = gray.mean(axis=2)
    bits = (gray >= gray.mean()).ravel()
    value = 0
    for index, bit in enumerate(bits):
        if bit:
            value |= 1 << index
    return _to_signed64(value)


def hamming_distance(a, b):
    return bin((a ^ b) & _MASK64).count("1")


def frame_similarity(a, b):
    if a is None or b is None or a.shape != b.shape:
        return 0.0
    stride = config.SIMILARITY_STRIDE
    diff = np.abs(a[::stride, ::stride].astype(np.int16) - b[::stride, ::stride].astype(np.int16))
    similar = diff.sum(axis=2) < config.SIMILARITY_PIXEL_TOLERANCE
    return float(similar.mean())


@dataclass(frozen=True)
class Tile:
    x: int
    y: int
    signature: int
    dark_ratio: float = 0.0
    black_ratio: float = 0.0
    is_black: bool = False

    @property
    def is_exit_candidate(self):
        return self.dark_ratio > config.EXIT_DARK_RATIO or self.black_ratio > config.EXIT_BLACK_RATIO


@dataclass
class TileGrid:
    tiles: list
    player: tuple = (config.PLAYER_TILE_X, config.PLAYER_TILE_Y)
    tile_size: int = config.TILE_SIZE
    _by_signature: dict = field(default=None, init=False, repr=False)

    @property
    def height(self):
        return len(self.tiles)

    @property
    def width(self):
        return len(self.tiles[0]) if self.tiles else 0

    def in_bounds(self, x, y):
        return 0 <= x < self.width and 0 <= y < self.height

    def tile_at(self, x, y):
        if not self.in_bounds(x, y):
            return None
        return self.tiles[y][x]

    def neighbor(self, direction, distance=1, origin=None):
        ox, oy = origin if origin is not None else self.player
        dx, dy = direction.delta
        return self.tile_at(ox + dx * distance, oy + dy * distance)

    def player_tile(self):
        return self.tile_at(*self.player)

    def signatures(self):
        if self._by_signature is None:
            self._by_signature = {}
            for row in self.tiles:
                for tile in row:
                    self._by_signature.setdefault(tile.signature, tile)
        return self._by_signature

    def contains_signature(self, signatures):
        present = self.signatures()
        return any(signature in present for signature in signatures)

    def direction_towards(self, x, y):
        dx = x - self.player[0]
        dy = y - self.player[1]
        if abs(dy) >= abs(dx):
            return Direction.UP if dy < 0 else Direction.DOWN
        return Direction.LEFT if dx < 0 else Direction.RIGHT

    def edge_exits(self):
        if not self.tiles:
            return []
        positions = []
        for x in range(self.width):
            positions.append((x, 0))
            positions.append((x, self.height - 1))
        for y in range(1, self.height - 1):
            positions.append((0, y))
            positions.append((self.width - 1, y))

        exits = []
        seen = set()
        for x, y in positions:
            if (x, y) in seen:
                continue
            seen.add((x, y))
            tile = self.tiles[y][x]
            if tile.is_exit_candidate:
                exits.append(tile)
        return exits

    def black_tiles(self):
        return [tile for row in self.tiles for tile in row if tile.is_black]


def _tile_from_pixels(x, y, pixels):
    brightness = _brightness(pixels)
    total = brightness.size
    dark_ratio = float(np.count_nonzero(brightness < config.DARK_BRIGHTNESS)) / total
    black_ratio = float(np.count_nonzero(brightness < config.BLACK_BRIGHTNESS)) / total
    return Tile(
        x=x,
        y=y,
        signature=tile_signature(pixels),
        dark_ratio=dark_ratio,
        black_ratio=black_ratio,
        is_black=black_ratio > config.BLACK_TILE_RATIO,
    )


def extract_tiles(frame, tile_size=None, player=None):
    tile_size = tile_size or config.TILE_SIZE
    if player is None:
        if tile_size == config.TILE_SIZE:
            player = (config.PLAYER_TILE_X, config.PLAYER_TILE_Y)
        else:
            # Same on-screen position expressed in the other granularity
            scale = config.TILE_SIZE / tile_size
            player = (int(config.PLAYER_TILE_X * scale), int(config.PLAYER_TILE_Y * scale))

    rows = frame.shape[0] // tile_size
    cols = frame.shape[1] // tile_size
    tiles = []
    for ty in range(rows):
        row = []
        for tx in range(cols):
            pixels = frame[ty * tile_size:(ty + 1) * tile_size, tx * tile_size:(tx + 1) * tile_size]
            row.append(_tile_from_pixels(tx, ty, pixels))
        tiles.append(row)
    return TileGrid(tiles=tiles, player=player, tile_size=tile_size)
