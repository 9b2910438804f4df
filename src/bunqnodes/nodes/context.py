"""
What a node needs from the workflow host: input items, parameters,
binary data and the continue-on-fail flag.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

_MISSING = object()


class NodeOperationError(Exception):
    """A node-level failure (bad parameters, unknown operation, resource not ready)."""

    def __init__(self, message: str, item_index: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.item_index = item_index


@dataclass
class BinaryData:
    data: bytes
    mime_type: str = "application/octet-stream"
    file_name: Optional[str] = None

    @property
    def file_size(self) -> int:
        return len(self.data)


@dataclass
class NodeItem:
    json: Dict[str, Any] = field(default_factory=dict)
    binary: Dict[str, BinaryData] = field(default_factory=dict)


class ExecutionContext:
    """Abstract-ish host interface.

    Methods:
      - get_input_items() -> List[NodeItem]
      - get_parameter(name, index, default) -> Any
      - continue_on_fail() -> bool
      - get_binary(index, property_name) -> BinaryData
    """

    def get_input_items(self) -> List[NodeItem]:
        raise NotImplementedError()

    def get_parameter(self, name: str, index: int = 0, default: Any = _MISSING) -> Any:
        raise NotImplementedError()

    def continue_on_fail(self) -> bool:
        return False

    def get_binary(self, index: int, property_name: str) -> BinaryData:
        items = self.get_input_items()
        if index >= len(items) or property_name not in items[index].binary:
            raise NodeOperationError(f'No binary data property "{property_name}" on item {index}', index)
        return items[index].binary[property_name]


class StaticContext(ExecutionContext):
    """
    Parameters shared by every item, optionally overridden per item.

    Usage:
        ctx = StaticContext({"resource": "payment", "operation": "list", "accountId": "12"},
                            items=[NodeItem()], per_item=[{"returnAll": True}])
    """

    def __init__(self, parameters: Dict[str, Any], items: Optional[List[NodeItem]] = None,
                 per_item: Optional[List[Dict[str, Any]]] = None, continue_on_fail: bool = False) -> None:
        self.parameters = dict(parameters)
        self.items = items if items is not None else [NodeItem()]
        self.per_item = per_item or []
        self._continue_on_fail = continue_on_fail

    def get_input_items(self) -> List[NodeItem]:
        return self.items

    def get_parameter(self, name: str, index: int = 0, default: Any = _MISSING) -> Any:
        if index < len(self.per_item) and name in self.per_item[index]:
            return self.per_item[index][name]
        if name in self.parameters:
            return self.parameters[name]
        if default is _MISSING:
            raise NodeOperationError(f'Missing required parameter "{name}"', index)
        return default

    def continue_on_fail(self) -> bool:
        return self._continue_on_fail
