"""
Voxel Graph Compiler
====================
Converts an editable GraphFunction into a Program of flat instructions.

Pipeline:
    GraphFunction  →  [expander]   →  ExpandedGraph
    ExpandedGraph  →  [scheduler]  →  Schedule
    Schedule       →  [emitter]    →  Program

Public API
----------
    from voxelgraph.compiler import compile_program

    result, program = compile_program(function, debug=False)
    if result.success:
        ...

Compilation errors are returned, never raised: on failure `program` is None
and the result carries the node the error is about.
"""

from __future__ import annotations

from typing import Optional, Tuple

import logging

from ..core.NodeNetwork import GraphFunction
from ..core.Types import CompilationResult
from .emitter import emit
from .expander import expand
from .ir import CompilationError, Instruction, Program, ProgramOutput
from .scheduler import schedule

logger = logging.getLogger(__name__)


def compile_program(function: GraphFunction, debug: bool = False) -> Tuple[CompilationResult, Optional[Program]]:
    """
    Compile a graph into a Program.

    Args:
        function:  The graph to compile. Function nodes it contains must be
                   up to date with the functions they embed.
        debug:     Keep the originating node id of each instruction and
                   compile preview nodes.

    Returns:
        (CompilationResult, Program or None)
    """
    try:
        expanded = expand(function, debug)
        program = emit(schedule(expanded), debug)
    except CompilationError as e:
        logger.warning(f"Compilation of '{function.name}' failed at node {e.node_id}: {e.message}")
        return CompilationResult(False, e.node_id, e.message), None

    logger.info(f"Compiled '{function.name}' ({'debug' if debug else 'release'}): "
                f"{len(program.instructions)} instructions, {program.buffer_count} buffers, "
                f"{program.expanded_nodes_count} expanded nodes")
    return CompilationResult(True, expanded_nodes_count=program.expanded_nodes_count), program


__all__ = ["compile_program", "CompilationError", "Instruction", "Program", "ProgramOutput"]
