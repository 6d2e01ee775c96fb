import numpy as np
import pytest

from voxelgraph.core.Types import Channel
from voxelgraph.generator.VoxelBuffer import (
    VoxelBuffer, decode_indices_from_packed_u16, decode_weights_from_packed_u16, encode_indices_to_packed_u16,
    encode_weights_to_packed_u16,
)


class TestPacking:

    def test_indices(self):
        packed = encode_indices_to_packed_u16(1, 2, 3, 4)
        assert int(packed) == 1 | (2 << 4) | (3 << 8) | (4 << 12)
        assert tuple(int(v) for v in decode_indices_from_packed_u16(packed)) == (1, 2, 3, 4)

    def test_indices_keep_low_nibble(self):
        packed = encode_indices_to_packed_u16(17, 0, 0, 0)
        assert int(decode_indices_from_packed_u16(packed)[0]) == 1

    def test_weights(self):
        packed = encode_weights_to_packed_u16(16, 80, 160, 240)
        assert tuple(int(v) for v in decode_weights_from_packed_u16(packed)) == (16, 80, 160, 240)

    def test_weights_lose_low_bits(self):
        packed = encode_weights_to_packed_u16(255, 15, 0, 100)
        assert tuple(int(v) for v in decode_weights_from_packed_u16(packed)) == (240, 0, 0, 96)

    def test_arrays(self):
        i0 = np.array([0, 1, 2], dtype=np.uint16)
        packed = encode_indices_to_packed_u16(i0, i0, i0, i0)
        assert packed.dtype == np.uint16
        assert packed.shape == (3,)
        assert np.array_equal(decode_indices_from_packed_u16(packed)[2], i0)


class TestVoxelBuffer:

    def test_create(self):
        buffer = VoxelBuffer((4, 5, 6))
        assert buffer.get_size() == (4, 5, 6)
        assert buffer.get_volume() == 120
        assert buffer.get_channel_depth(Channel.SDF) == 16
        assert buffer.get_channel_array(Channel.SDF).shape == (4, 5, 6)
        assert buffer.get_channel_array(Channel.SDF).dtype == np.int16
        assert buffer.get_channel_array(Channel.WEIGHTS).dtype == np.uint16

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            VoxelBuffer((0, 4, 4))
        with pytest.raises(ValueError):
            VoxelBuffer((4, 4))

    def test_invalid_depth(self):
        with pytest.raises(ValueError):
            VoxelBuffer((4, 4, 4), sdf_depth=12)
        buffer = VoxelBuffer((4, 4, 4))
        with pytest.raises(ValueError):
            buffer.set_channel_depth(Channel.SDF, 24)
        with pytest.raises(ValueError):
            buffer.set_channel_depth(Channel.INDICES, 8)
        with pytest.raises(ValueError):
            buffer.set_channel_depth(Channel.WEIGHTS, 32)

    def test_cleared_sdf_is_far_outside(self):
        buffer = VoxelBuffer((2, 2, 2))
        assert buffer.get_voxel_f(0, 0, 0) == 1.0
        # Clipped to the representable range of the 16-bit quantization
        assert np.allclose(buffer.get_sdf_values(), 500.0)

    def test_set_channel_depth(self):
        buffer = VoxelBuffer((2, 2, 2))
        buffer.set_channel_depth(Channel.SDF, 32)
        assert buffer.get_channel_array(Channel.SDF).dtype == np.float32
        assert buffer.get_sdf_quantization_scale() == 1.0
        assert buffer.get_voxel_f(1, 1, 1) == 1e6

        buffer.set_channel_depth(Channel.SDF, 8)
        assert buffer.get_channel_array(Channel.SDF).dtype == np.int8
        assert buffer.get_sdf_quantization_scale() == 0.1

    def test_snorm_encoding(self):
        buffer = VoxelBuffer((2, 2, 2))
        buffer.set_voxel_f(0.5, 1, 0, 1)
        assert buffer.get_voxel(1, 0, 1, Channel.SDF) == 16384
        assert buffer.get_voxel_f(1, 0, 1) == pytest.approx(0.5, abs=1e-4)

        buffer.set_voxel_f(-5.0, 0, 0, 0)
        assert buffer.get_voxel(0, 0, 0, Channel.SDF) == -32767
        assert buffer.get_voxel_f(0, 0, 0) == -1.0

    def test_snorm_minimum_decodes_to_minus_one(self):
        buffer = VoxelBuffer((1, 1, 1))
        buffer.set_voxel(-32768, 0, 0, 0, Channel.SDF)
        assert buffer.get_voxel_f(0, 0, 0) == -1.0

    def test_float_encoding(self):
        buffer = VoxelBuffer((2, 2, 2), sdf_depth=32)
        buffer.set_voxel_f(-42.25, 0, 1, 0)
        assert buffer.get_voxel_f(0, 1, 0) == -42.25

    def test_sdf_values_are_scaled(self):
        buffer = VoxelBuffer((2, 2, 2))
        distances = np.full((2, 2, 2), 10.0)
        distances[0, 0, 0] = -100.0
        buffer.set_sdf_values(distances)
        # 10 * 0.002 = 0.02
        assert buffer.get_voxel_f(1, 1, 1) == pytest.approx(0.02, abs=1e-4)
        values = buffer.get_sdf_values()
        assert values[1, 1, 1] == pytest.approx(10.0, abs=0.02)
        assert values[0, 0, 0] == pytest.approx(-100.0, abs=0.02)

    def test_indexing_order(self):
        buffer = VoxelBuffer((2, 3, 4))
        buffer.set_voxel(7, 1, 2, 3, Channel.TYPE)
        assert buffer.get_channel_array(Channel.TYPE)[1, 2, 3] == 7
        assert buffer.get_voxel(1, 2, 3) == 7

    def test_out_of_range(self):
        buffer = VoxelBuffer((2, 2, 2))
        with pytest.raises(ValueError):
            buffer.get_voxel(2, 0, 0)
        with pytest.raises(ValueError):
            buffer.set_voxel_f(0.0, 0, -1, 0)
        with pytest.raises(ValueError):
            buffer.get_voxel_f(0, 0, 5)

    def test_fill(self):
        buffer = VoxelBuffer((2, 2, 2))
        buffer.fill(3)
        assert np.all(buffer.get_channel_array(Channel.TYPE) == 3)
        buffer.fill_f(-0.25)
        assert np.allclose(buffer.get_sdf_values(), -125.0, atol=0.02)

    def test_texturing_defaults(self):
        buffer = VoxelBuffer((1, 1, 1))
        assert buffer.get_voxel_indices(0, 0, 0) == (0, 0, 0, 0)
        assert buffer.get_voxel_weights(0, 0, 0) == (0, 0, 0, 0)

        buffer.set_voxel(int(encode_indices_to_packed_u16(3, 1, 0, 2)), 0, 0, 0, Channel.INDICES)
        assert buffer.get_voxel_indices(0, 0, 0) == (3, 1, 0, 2)


class TestSdfComparison:

    def test_equal(self):
        a = VoxelBuffer((3, 3, 3))
        b = VoxelBuffer((3, 3, 3))
        assert a.sdf_equals_approx(b)

    def test_quantization_step_tolerance(self):
        a = VoxelBuffer((3, 3, 3))
        b = VoxelBuffer((3, 3, 3))
        a.set_voxel(100, 1, 1, 1, Channel.SDF)
        b.set_voxel(101, 1, 1, 1, Channel.SDF)
        assert a.sdf_equals_approx(b)
        b.set_voxel(102, 1, 1, 1, Channel.SDF)
        assert not a.sdf_equals_approx(b)
        assert a.sdf_equals_approx(b, tolerance=2)

    def test_float_tolerance(self):
        a = VoxelBuffer((2, 2, 2), sdf_depth=32)
        b = VoxelBuffer((2, 2, 2), sdf_depth=32)
        a.fill_f(100.0)
        b.fill_f(100.001)
        assert a.sdf_equals_approx(b)
        b.fill_f(100.1)
        assert not a.sdf_equals_approx(b)

    def test_mismatch(self):
        assert not VoxelBuffer((2, 2, 2)).sdf_equals_approx(VoxelBuffer((2, 2, 3)))
        assert not VoxelBuffer((2, 2, 2)).sdf_equals_approx(VoxelBuffer((2, 2, 2), sdf_depth=32))
