"""PNG output for rendered plans."""
from __future__ import annotations

import io
import logging
import xml.etree.ElementTree as ET
from typing import Optional, Tuple

from PIL import Image, ImageColor

from .render import SVG_NS, FocusNotFoundError, format_length

logger = logging.getLogger(__name__)


def render_png(
    svg_text: str,
    *,
    scale: float = 1.0,
    focus_node: Optional[int] = None,
    padding: float = 20.0,
    background: Optional[str] = "#ffffff",
) -> bytes:
    """Rasterise plan SVG, optionally cropped to one operator.

    ``background`` of ``None`` or ``"none"`` keeps the transparent canvas.
    """
    render_input = svg_text
    if focus_node is not None:
        render_input = _apply_focus_crop(svg_text, focus_node, padding)
    fill = parse_background(background)

    try:
        import cairosvg
    except (ImportError, OSError) as exc:  # pragma: no cover - depends on native cairo
        raise RuntimeError(
            "planviz PNG output requires CairoSVG and the cairo library; "
            "install cairo for your platform and reinstall the package."
        ) from exc

    png_bytes = cairosvg.svg2png(bytestring=render_input.encode("utf-8"), scale=scale)
    if fill is None:
        return png_bytes
    return _flatten(png_bytes, fill)


def parse_background(value: Optional[str]) -> Optional[Tuple[int, ...]]:
    """RGB tuple for a CSS colour, or ``None`` for a transparent canvas.

    Raises ``ValueError`` for colours Pillow does not understand.
    """
    if value is None or value.strip().lower() in {"none", "transparent"}:
        return None
    return ImageColor.getrgb(value.strip())


def _flatten(png_bytes: bytes, color: Tuple[int, ...]) -> bytes:
    with Image.open(io.BytesIO(png_bytes)) as image:
        rgba = image.convert("RGBA")
    canvas = Image.new("RGBA", rgba.size, color[:3] + (255,))
    canvas.alpha_composite(rgba)
    out = io.BytesIO()
    canvas.convert("RGB").save(out, format="PNG")
    return out.getvalue()


def _apply_focus_crop(svg_text: str, focus_node: int, padding: float) -> str:
    root = ET.fromstring(svg_text)
    rect = None
    for group in root.iter(f"{{{SVG_NS}}}g"):
        if group.get("class") == "plan-node" and group.get("data-node-id") == str(focus_node):
            rect = group.find(f"{{{SVG_NS}}}rect")
            break
    if rect is None:
        raise FocusNotFoundError(f'focus node "{focus_node}" not found')

    left = float(rect.get("x", "0"))
    top = float(rect.get("y", "0"))
    width = float(rect.get("width", "0"))
    height = float(rect.get("height", "0"))
    pad = max(padding, 0.0)
    view_w = max(width + 2 * pad, 1.0)
    view_h = max(height + 2 * pad, 1.0)
    logger.debug("cropping plan to node %s at (%s, %s)", focus_node, left, top)

    view_box = (left - pad, top - pad, view_w, view_h)
    root.set("viewBox", " ".join(format_length(v) for v in view_box))
    root.set("width", format_length(view_w))
    root.set("height", format_length(view_h))
    return ET.tostring(root, encoding="unicode")


__all__ = ["parse_background", "render_png"]
