"""Inbound adapters: the fluent query-building API.

Exports:
    - DataFrame, GroupedData: lazy relation builders with async actions
    - Column: expression wrapper with Python operators
    - Window, WindowSpec: window specifications for ``Column.over``
    - functions: column functions (``col``, ``lit``, aggregates, ...)
"""

from dfconnect.adapters.inbound import functions
from dfconnect.adapters.inbound.column import Column
from dfconnect.adapters.inbound.dataframe import DataFrame, GroupedData
from dfconnect.adapters.inbound.window import Window, WindowSpec

__all__ = [
    "Column",
    "DataFrame",
    "GroupedData",
    "Window",
    "WindowSpec",
    "functions",
]
