"""Node graph compiler and block interpreter for procedural signed-distance voxels."""
from .compiler import compile_program
from .core.GraphPrimitives import PortLocation
from .core.NodeNetwork import GraphFunction
from .core.Types import Channel, CompilationResult, NodeTypeID
from .generator import VoxelBuffer, VoxelGeneratorGraph

__version__ = "0.1.0"

__all__ = [
    "Channel", "CompilationResult", "GraphFunction", "NodeTypeID", "PortLocation", "VoxelBuffer",
    "VoxelGeneratorGraph", "compile_program",
]
