"""
Overlay helpers for camera preview frames.

Provides:
- draw_detection_box(): rectangle around the last captured face
"""

import cv2
import numpy as np
from typing import Optional, Tuple


def draw_detection_box(
    frame: np.ndarray,
    bbox: Tuple[int, int, int, int],
    label: Optional[str] = None,
    color: Tuple[int, int, int] = (0, 200, 0),
) -> np.ndarray:
    """Draw a detection box on the frame.

    Args:
        frame: BGR image to draw on (modified in-place).
        bbox: (x1, y1, x2, y2) in pixels. Clipped to the frame.
        label: Optional text drawn above the box.
        color: BGR color.

    Returns:
        The same frame, for chaining.
    """
    h, w = frame.shape[:2]
    x1, y1, x2, y2 = bbox
    x1, x2 = max(0, min(x1, w - 1)), max(0, min(x2, w - 1))
    y1, y2 = max(0, min(y1, h - 1)), max(0, min(y2, h - 1))

    cv2.rectangle(frame, (x1, y1), (x2, y2), color, 2, cv2.LINE_AA)

    if label:
        ty = y1 - 8 if y1 > 20 else y2 + 20
        cv2.putText(frame, label, (x1, ty), cv2.FONT_HERSHEY_SIMPLEX,
                    0.55, color, 1, cv2.LINE_AA)
    return frame
