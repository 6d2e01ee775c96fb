from .VoxelBuffer import VoxelBuffer
from .VoxelGeneratorGraph import NodeProfilingInfo, VoxelGeneratorGraph

__all__ = ["NodeProfilingInfo", "VoxelBuffer", "VoxelGeneratorGraph"]
