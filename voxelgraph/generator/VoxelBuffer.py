from typing import Dict, Optional, Sequence, Tuple

from logging import getLogger

import numpy as np

from ..core.Types import Channel
from ..defaults import (
    DEFAULT_CHANNEL_DEPTH, DEFAULT_SDF_DEPTH, SDF_QUANTIZATION_SCALE_BY_DEPTH, SDF_TOLERANCE_BY_DEPTH,
)

logger = getLogger(__name__)

DEPTHS = (8, 16, 32, 64)

_SNORM_MAX = {8: 127, 16: 32767}
_SDF_DTYPES = {8: np.int8, 16: np.int16, 32: np.float32, 64: np.float64}
_UINT_DTYPES = {8: np.uint8, 16: np.uint16, 32: np.uint32, 64: np.uint64}

# Texturing channels always hold 4 packed nibbles
_PACKED_CHANNELS = (Channel.INDICES, Channel.WEIGHTS)


# ── Packing ──────────────────────────────────────────────────────────────────

def encode_indices_to_packed_u16(i0, i1, i2, i3):
    """Four layer indices (0..15) → one u16, first index in the low nibble."""
    return ((np.asarray(i0, dtype=np.uint16) & 0xF)
            | ((np.asarray(i1, dtype=np.uint16) & 0xF) << 4)
            | ((np.asarray(i2, dtype=np.uint16) & 0xF) << 8)
            | ((np.asarray(i3, dtype=np.uint16) & 0xF) << 12)).astype(np.uint16)


def decode_indices_from_packed_u16(packed) -> Tuple:
    packed = np.asarray(packed, dtype=np.uint16)
    return tuple((packed >> shift) & 0xF for shift in (0, 4, 8, 12))


def encode_weights_to_packed_u16(w0, w1, w2, w3):
    """Four 8-bit weights → one u16, keeping the 4 high bits of each."""
    return encode_indices_to_packed_u16(*(np.asarray(w, dtype=np.uint16) >> 4 for w in (w0, w1, w2, w3)))


def decode_weights_from_packed_u16(packed) -> Tuple:
    return tuple(nibble << 4 for nibble in decode_indices_from_packed_u16(packed))


class VoxelBuffer:
    """
    Dense block of voxels, arrays indexed [x, y, z].

    The SDF channel stores distances multiplied by the quantization scale of
    its depth. 8 and 16-bit depths store them as signed normalized integers,
    so only the band of distances near a surface is represented precisely.
    32 and 64-bit depths store raw floats.
    """

    def __init__(self, size: Sequence[int] = (16, 16, 16), sdf_depth: int = DEFAULT_SDF_DEPTH,
                 type_depth: int = DEFAULT_CHANNEL_DEPTH):
        self._size = (0, 0, 0)
        self._depths: Dict[Channel, int] = {
            Channel.TYPE: type_depth,
            Channel.SDF: sdf_depth,
            Channel.INDICES: 16,
            Channel.WEIGHTS: 16,
        }
        for depth in (sdf_depth, type_depth):
            if depth not in DEPTHS:
                raise ValueError(f"Unsupported channel depth {depth}, expected one of {DEPTHS}")
        self._channels: Dict[Channel, np.ndarray] = {}
        self.create(size)

    def create(self, size: Sequence[int]):
        size = tuple(int(s) for s in size)
        if len(size) != 3 or any(s <= 0 for s in size):
            raise ValueError(f"Invalid buffer size {size}")
        self._size = size
        for channel in Channel:
            self._channels[channel] = np.zeros(size, dtype=self._dtype(channel))
        self.clear_sdf()

    def _dtype(self, channel: Channel):
        depth = self._depths[channel]
        if channel == Channel.SDF:
            return _SDF_DTYPES[depth]
        return _UINT_DTYPES[depth]

    def get_size(self) -> Tuple[int, int, int]:
        return self._size

    def get_volume(self) -> int:
        return self._size[0] * self._size[1] * self._size[2]

    def get_channel_depth(self, channel: Channel) -> int:
        return self._depths[channel]

    def set_channel_depth(self, channel: Channel, depth: int):
        """Changes the depth of a channel. Its content is reset."""
        if depth not in DEPTHS:
            raise ValueError(f"Unsupported channel depth {depth}, expected one of {DEPTHS}")
        if channel in _PACKED_CHANNELS and depth != 16:
            raise ValueError(f"{channel.name} channel is always 16-bit")
        self._depths[channel] = depth
        self._channels[channel] = np.zeros(self._size, dtype=self._dtype(channel))
        if channel == Channel.SDF:
            self.clear_sdf()

    def get_channel_array(self, channel: Channel) -> np.ndarray:
        """Raw storage of a channel, not a copy."""
        return self._channels[channel]

    def clear_sdf(self):
        # Empty space is "far outside"
        self.fill_f(1e6, Channel.SDF)

    # ── SDF encoding ─────────────────────────────────────────────────────

    def get_sdf_quantization_scale(self) -> float:
        return SDF_QUANTIZATION_SCALE_BY_DEPTH[self._depths[Channel.SDF]]

    def encode_sdf(self, values) -> np.ndarray:
        """Scaled distances → SDF storage values."""
        depth = self._depths[Channel.SDF]
        values = np.asarray(values, dtype=np.float64)
        if depth in _SNORM_MAX:
            snorm_max = _SNORM_MAX[depth]
            clipped = np.clip(np.nan_to_num(values), -1.0, 1.0)
            return np.round(clipped * snorm_max).astype(_SDF_DTYPES[depth])
        return values.astype(_SDF_DTYPES[depth])

    def decode_sdf(self, raw) -> np.ndarray:
        """SDF storage values → scaled distances."""
        depth = self._depths[Channel.SDF]
        raw = np.asarray(raw)
        if depth in _SNORM_MAX:
            return np.maximum(raw.astype(np.float64) / _SNORM_MAX[depth], -1.0)
        return raw.astype(np.float64)

    # ── Voxel access ─────────────────────────────────────────────────────

    def _check_position(self, x: int, y: int, z: int):
        if not (0 <= x < self._size[0] and 0 <= y < self._size[1] and 0 <= z < self._size[2]):
            raise ValueError(f"Position ({x}, {y}, {z}) is outside of buffer of size {self._size}")

    def set_voxel(self, value: int, x: int, y: int, z: int, channel: Channel = Channel.TYPE):
        self._check_position(x, y, z)
        self._channels[channel][x, y, z] = value

    def get_voxel(self, x: int, y: int, z: int, channel: Channel = Channel.TYPE) -> int:
        self._check_position(x, y, z)
        return self._channels[channel][x, y, z].item()

    def set_voxel_f(self, value: float, x: int, y: int, z: int, channel: Channel = Channel.SDF):
        self._check_position(x, y, z)
        if channel == Channel.SDF:
            self._channels[channel][x, y, z] = self.encode_sdf(value)
        else:
            self._channels[channel][x, y, z] = value

    def get_voxel_f(self, x: int, y: int, z: int, channel: Channel = Channel.SDF) -> float:
        self._check_position(x, y, z)
        raw = self._channels[channel][x, y, z]
        if channel == Channel.SDF:
            return float(self.decode_sdf(raw))
        return float(raw)

    def fill(self, value: int, channel: Channel = Channel.TYPE):
        self._channels[channel].fill(value)

    def fill_f(self, value: float, channel: Channel = Channel.SDF):
        if channel == Channel.SDF:
            self._channels[channel][...] = self.encode_sdf(value)
        else:
            self._channels[channel].fill(value)

    def set_sdf_values(self, distances: np.ndarray, scale: Optional[float] = None):
        """Writes unscaled distances shaped like the buffer."""
        if scale is None:
            scale = self.get_sdf_quantization_scale()
        self._channels[Channel.SDF][...] = self.encode_sdf(np.asarray(distances, dtype=np.float64) * scale)

    def get_sdf_values(self) -> np.ndarray:
        """Unscaled distances, as read back by generators."""
        return self.decode_sdf(self._channels[Channel.SDF]) / self.get_sdf_quantization_scale()

    # ── Texturing ────────────────────────────────────────────────────────

    def get_voxel_indices(self, x: int, y: int, z: int) -> Tuple[int, int, int, int]:
        packed = self.get_voxel(x, y, z, Channel.INDICES)
        return tuple(int(v) for v in decode_indices_from_packed_u16(packed))

    def get_voxel_weights(self, x: int, y: int, z: int) -> Tuple[int, int, int, int]:
        packed = self.get_voxel(x, y, z, Channel.WEIGHTS)
        return tuple(int(v) for v in decode_weights_from_packed_u16(packed))

    # ── Comparison ───────────────────────────────────────────────────────

    def sdf_equals_approx(self, other: 'VoxelBuffer', tolerance: Optional[float] = None) -> bool:
        """
        Compares SDF channels. For 8/16-bit depths the tolerance is in steps
        of the stored integers, for 32/64-bit it is a relative epsilon.
        """
        if self._size != other._size:
            return False
        depth = self._depths[Channel.SDF]
        if depth != other._depths[Channel.SDF]:
            return False
        if tolerance is None:
            tolerance = SDF_TOLERANCE_BY_DEPTH[depth]
        a = self._channels[Channel.SDF].astype(np.float64)
        b = other._channels[Channel.SDF].astype(np.float64)
        if depth in _SNORM_MAX:
            return bool(np.all(np.abs(a - b) <= tolerance))
        limit = tolerance * np.maximum(1.0, np.maximum(np.abs(a), np.abs(b)))
        return bool(np.all((np.abs(a - b) <= limit) | (a == b)))

    def __repr__(self):
        return f"VoxelBuffer({self._size}, sdf_depth={self._depths[Channel.SDF]})"
