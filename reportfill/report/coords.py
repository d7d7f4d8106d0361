"""Conversion between layout coordinates (top-left origin, y down) and the PDF canvas
(bottom-left origin, y up). Every piece of geometry handed to the overlay canvas goes
through exactly one of these functions."""

from __future__ import annotations


def to_native_rect(x: float, y: float, w: float, h: float, page_height: float) -> tuple[float, float, float, float]:
    return (x, page_height - y - h, w, h)


def from_native_rect(x: float, y: float, w: float, h: float, page_height: float) -> tuple[float, float, float, float]:
    return (x, page_height - y - h, w, h)


def to_native_baseline(page_height: float, y: float) -> float:
    return page_height - y
