import cv2
import numpy as np
import logging
from dataclasses import dataclass

import config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TemplateData:
    rgb: np.ndarray
    mask: np.ndarray | None

    @property
    def width(self):
        return self.rgb.shape[1]

    @property
    def height(self):
        return self.rgb.shape[0]


@dataclass(frozen=True)
class MatchResult:
    found: bool
    confidence: float
    x: int = 0
    y: int = 0
    width: int = 0
    height: int = 0

    @property
    def center(self):
        return self.x + self.width // 2, self.y + self.height // 2


class ImageMatcher:
    def __init__(self, tolerance=None, sample_step=None, early_exit=None, refine=None):
        self.tolerance = config.TEMPLATE_TOLERANCE if tolerance is None else tolerance
        self.sample_step = max(1, config.TEMPLATE_SAMPLE_STEP if sample_step is None else sample_step)
        self.early_exit = config.TEMPLATE_EARLY_EXIT if early_exit is None else early_exit
        self.refine = config.TEMPLATE_REFINE if refine is None else refine

    def load_template(self, template_path):
        template = cv2.imread(str(template_path), cv2.IMREAD_UNCHANGED)
        if template is None:
            raise FileNotFoundError(f"Template not found: {template_path}")

        mask = None
        if len(template.shape) == 2:
            template = cv2.cvtColor(template, cv2.COLOR_GRAY2BGR)
        elif template.shape[2] == 4:
            alpha = template[:, :, 3]
            mask = np.zeros_like(alpha)
            mask[alpha > 0] = 255
            template = cv2.cvtColor(template, cv2.COLOR_BGRA2BGR)

        rgb = np.ascontiguousarray(cv2.cvtColor(template, cv2.COLOR_BGR2RGB))
        return self.from_array(rgb, mask)

    def from_array(self, rgb, mask=None):
        rgb = np.ascontiguousarray(rgb)
        if mask is not None and mask.shape[:2] != rgb.shape[:2]:
            raise ValueError(f"Mask shape {mask.shape[:2]} does not match template {rgb.shape[:2]}")
        return TemplateData(rgb=rgb, mask=mask)

    def _sample_points(self, template):
        rate = max(1, min(template.width, template.height) // 16)
        ys, xs = np.mgrid[0:template.height:rate, 0:template.width:rate]
        ys = ys.ravel()
        xs = xs.ravel()
        if template.mask is not None:
            keep = template.mask[ys, xs] > 0
            ys = ys[keep]
            xs = xs[keep]
        return ys, xs

    def _confidence_at(self, screenshot, template_pixels, ys, xs, x, y):
        window = screenshot[y + ys, x + xs].astype(np.int16)
        diff = np.abs(window - template_pixels)
        within = (diff <= self.tolerance).all(axis=1)
        return float(within.mean())

    def _scan(self, screenshot, template_pixels, ys, xs, x_range, y_range, step, stop_at=None):
        best = (-1.0, x_range[0], y_range[0])
        for y in range(y_range[0], y_range[1] + 1, step):
            for x in range(x_range[0], x_range[1] + 1, step):
                confidence = self._confidence_at(screenshot, template_pixels, ys, xs, x, y)
                if confidence > best[0]:
                    best = (confidence, x, y)
                    if stop_at is not None and confidence >= stop_at:
                        return best
        return best

    def find_template(self, screenshot, template, min_confidence, region=None, template_name="Unknown"):
        th, tw = template.height, template.width
        sh, sw = screenshot.shape[:2]

        if region is not None:
            rx, ry, rw, rh = region
            x0 = max(0, int(rx))
            y0 = max(0, int(ry))
            x1 = min(sw, int(rx + rw))
            y1 = min(sh, int(ry + rh))
        else:
            x0, y0, x1, y1 = 0, 0, sw, sh

        if x1 - x0 < tw or y1 - y0 < th:
            logger.debug(f"[{template_name}] Template {tw}x{th} does not fit search area ({x0},{y0})-({x1},{y1})")
            return MatchResult(False, 0.0)

        ys, xs = self._sample_points(template)
        if ys.size == 0:
            return MatchResult(False, 0.0)
        template_pixels = template.rgb[ys, xs].astype(np.int16)

        x_range = (x0, x1 - tw)
        y_range = (y0, y1 - th)
        confidence, bx, by = self._scan(
            screenshot, template_pixels, ys, xs, x_range, y_range, self.sample_step, stop_at=self.early_exit
        )

        if self.refine and self.sample_step > 1 and confidence < self.early_exit:
            radius = self.sample_step
            refine_x = (max(x_range[0], bx - radius), min(x_range[1], bx + radius))
            refine_y = (max(y_range[0], by - radius), min(y_range[1], by + radius))
            confidence, bx, by = self._scan(screenshot, template_pixels, ys, xs, refine_x, refine_y, 1)

        found = confidence >= min_confidence
        if found:
            logger.debug(f"[{template_name}] Match at ({bx}, {by}) confidence {confidence:.2%}")
        return MatchResult(found, confidence, bx, by, tw, th)
