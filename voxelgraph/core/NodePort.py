from enum import Enum, auto
from typing import Any

from .Types import AutoConnect


class PortDirection(Enum):
    INPUT = auto()
    OUTPUT = auto()


class NodePort:
    """
    Named slot on a node. Ports only describe the slot, connections are owned
    by the graph and addressed by (node id, port index).
    """

    def __init__(self, node_id: int, port_name: str, direction: PortDirection):
        self.node_id = node_id
        self.port_name = port_name
        self.direction = direction

    def to_dict(self) -> dict:
        return {"name": self.port_name, "direction": self.direction.name.lower()}

    def __repr__(self):
        return f"{type(self).__name__}({self.node_id}.{self.port_name})"


class InputPort(NodePort):
    """
    Input slot. When nothing is connected the literal `default_value` is used,
    unless `autoconnect` names a coordinate the compiler binds instead.
    """

    def __init__(self, node_id: int, port_name: str, default_value: float = 0.0,
                 autoconnect: AutoConnect = AutoConnect.NONE):
        super().__init__(node_id, port_name, PortDirection.INPUT)
        self.default_value = float(default_value)
        self.autoconnect = autoconnect

    def set_default_value(self, value: Any):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"Default value of port '{self.port_name}' must be a number, got {value!r}")
        self.default_value = float(value)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["default_value"] = self.default_value
        if self.autoconnect != AutoConnect.NONE:
            data["autoconnect"] = self.autoconnect.name.lower()
        return data


class OutputPort(NodePort):
    def __init__(self, node_id: int, port_name: str):
        super().__init__(node_id, port_name, PortDirection.OUTPUT)
