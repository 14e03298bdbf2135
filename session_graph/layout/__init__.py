"""Layered layout engine for expert flows."""

from .engine import (
    DEFAULT_LAYOUT_CONFIG,
    DynamicLayoutEngine,
    InsertBetween,
    LayoutConfig,
    LayoutLink,
    LayoutNode,
    LayoutResult,
    NodeAdditionOptions,
)

__all__ = [
    "DEFAULT_LAYOUT_CONFIG",
    "DynamicLayoutEngine",
    "InsertBetween",
    "LayoutConfig",
    "LayoutLink",
    "LayoutNode",
    "LayoutResult",
    "NodeAdditionOptions",
]
