import numpy as np
import pytest

from actions import Direction
from frame_reader import (
    extract_tiles,
    frame_signature,
    frame_similarity,
    hamming_distance,
    normalize_frame,
    perceptual_hash,
    tile_signature,
)


def solid_frame(value=120, height=144, width=160):
    return np.full((height, width, 3), value, dtype=np.uint8)


@pytest.mark.unit
class TestNormalizeFrame:
    def test_scales_to_logical_resolution(self):
        frame = solid_frame(height=288, width=320)
        frame[0:2, 0:2] = (255, 0, 0)
        normalized = normalize_frame(frame)
        assert normalized.shape == (144, 160, 3)
        assert tuple(normalized[0, 0]) == (255, 0, 0)
        assert tuple(normalized[1, 1]) == (120, 120, 120)

    def test_drops_alpha_channel(self):
        frame = np.zeros((144, 160, 4), dtype=np.uint8)
        assert normalize_frame(frame).shape == (144, 160, 3)

    def test_rejects_non_images(self):
        with pytest.raises(ValueError):
            normalize_frame([[1, 2, 3]])
        with pytest.raises(ValueError):
            normalize_frame(np.zeros((0, 0, 3), dtype=np.uint8))


@pytest.mark.unit
class TestSignatures:
    def test_identical_tiles_share_a_signature(self):
        grid = extract_tiles(solid_frame())
        signatures = {tile.signature for row in grid.tiles for tile in row}
        assert len(signatures) == 1

    def test_distinct_tiles_differ(self):
        frame = solid_frame()
        frame[0:16, 16:32] = (200, 40, 40)
        grid = extract_tiles(frame)
        assert grid.tile_at(0, 0).signature != grid.tile_at(1, 0).signature

    def test_quantization_absorbs_small_noise(self):
        a = np.full((16, 16, 3), 100, dtype=np.uint8)
        b = np.full((16, 16, 3), 103, dtype=np.uint8)
        assert tile_signature(a) == tile_signature(b)

    def test_signatures_are_signed_64_bit(self):
        frame = np.random.default_rng(3).integers(0, 256, (144, 160, 3), dtype=np.uint8)
        values = [frame_signature(frame)] + [t.signature for row in extract_tiles(frame).tiles for t in row]
        assert all(-(2**63) <= value < 2**63 for value in values)

    def test_frame_signature_detects_change(self):
        a = solid_frame(120)
        b = solid_frame(120)
        assert frame_signature(a) == frame_signature(b)
        b[0:20, 0:20] = 0
        assert frame_signature(a) != frame_signature(b)

    def test_perceptual_hash_distance(self):
        frame = solid_frame(0)
        frame[:, 80:] = 255
        inverted = 255 - frame
        assert hamming_distance(perceptual_hash(frame), perceptual_hash(frame)) == 0
        assert hamming_distance(perceptual_hash(frame), perceptual_hash(inverted)) == 64


@pytest.mark.unit
class TestTileGrid:
    def test_default_grid_shape(self):
        grid = extract_tiles(solid_frame())
        assert (grid.width, grid.height) == (10, 9)
        assert grid.player == (4, 4)

    def test_fine_grid_shape(self):
        grid = extract_tiles(solid_frame(), tile_size=8)
        assert (grid.width, grid.height) == (20, 18)
        assert grid.player == (8, 8)

    def test_neighbor(self):
        grid = extract_tiles(solid_frame())
        assert (grid.neighbor(Direction.UP).x, grid.neighbor(Direction.UP).y) == (4, 3)
        assert (grid.neighbor(Direction.RIGHT, 3).x, grid.neighbor(Direction.RIGHT, 3).y) == (7, 4)
        assert grid.neighbor(Direction.LEFT, 5) is None

    def test_dark_edge_tiles_are_exits(self):
        frame = solid_frame()
        frame[0:16, 64:80] = 0
        frame[64:80, 144:160] = 20
        grid = extract_tiles(frame)
        exits = {(tile.x, tile.y) for tile in grid.edge_exits()}
        assert exits == {(4, 0), (9, 4)}
        assert grid.tile_at(4, 0).is_black is True
        assert grid.tile_at(9, 4).is_black is False

    def test_corner_exit_reported_once(self):
        frame = solid_frame()
        frame[0:16, 0:16] = 0
        exits = extract_tiles(frame).edge_exits()
        assert [(tile.x, tile.y) for tile in exits] == [(0, 0)]

    def test_bright_frame_has_no_exits(self):
        assert extract_tiles(solid_frame(200)).edge_exits() == []

    def test_direction_towards(self):
        grid = extract_tiles(solid_frame())
        assert grid.direction_towards(4, 0) is Direction.UP
        assert grid.direction_towards(4, 8) is Direction.DOWN
        assert grid.direction_towards(0, 3) is Direction.LEFT
        assert grid.direction_towards(9, 5) is Direction.RIGHT
        assert grid.direction_towards(8, 0) is Direction.UP


@pytest.mark.unit
class TestFrameSimilarity:
    def test_identical_frames(self):
        assert frame_similarity(solid_frame(), solid_frame()) == 1.0

    def test_different_frames(self):
        assert frame_similarity(solid_frame(0), solid_frame(200)) == 0.0

    def test_shape_mismatch(self):
        assert frame_similarity(solid_frame(), solid_frame(height=10, width=10)) == 0.0
