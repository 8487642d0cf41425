import logging
import random
from dataclasses import dataclass

import numpy as np

import config
from asset_scanner import AssetScanner
from frame_reader import frame_similarity
from game_state import BattlePhase, Classification, GameStateType, MenuType
from image_matcher import ImageMatcher

logger = logging.getLogger(__name__)

# Lower rank wins when several templates qualify
STATE_PRECEDENCE = {
    GameStateType.BLACK_SCREEN: 0,
    GameStateType.BATTLE: 1,
    GameStateType.MENU: 2,
    GameStateType.DIALOGUE: 3,
    GameStateType.TITLE: 4,
    GameStateType.OVERWORLD: 5,
    GameStateType.UNKNOWN: 6,
}


def _clip_region(frame, x0, y0, x1, y1):
    h, w = frame.shape[:2]
    return frame[max(0, y0):min(h, y1), max(0, x0):min(w, x1)]


def _dark_mask(pixels, limit):
    return (pixels < limit).all(axis=-1)


def _near_mask(pixels, value, tolerance):
    return (np.abs(pixels.astype(np.int16) - value) <= tolerance).all(axis=-1)


def is_black_screen(frame, rng, samples):
    h, w = frame.shape[:2]
    black = 0
    for _ in range(samples):
        x = rng.randrange(w)
        y = rng.randrange(h)
        if (frame[y, x] < config.BLACK_PIXEL_MAX).all():
            black += 1
    return black > samples * config.BLACK_SCREEN_RATIO


def has_menu_box(frame, x, y, w, h):
    fh, fw = frame.shape[:2]
    rows = [row for row in (y, y + h - 1) if 0 <= row < fh]
    x_end = min(fw, x + w)
    if not rows or x >= x_end:
        return False

    border = frame[rows][:, x:x_end:4]
    border_hits = int(np.count_nonzero(_near_mask(border, 0, config.BLACK_TOLERANCE)))
    if border_hits <= config.MENU_BORDER_MIN_HITS:
        return False

    interior = frame[max(0, y + 8):min(fh, y + h - 8):8, max(0, x + 8):min(fw, x + w - 8):8]
    if interior.size == 0:
        return False
    interior_hits = int(np.count_nonzero(_near_mask(interior, config.WHITE_VALUE, config.WHITE_TOLERANCE)))
    return interior_hits > config.MENU_INTERIOR_MIN_HITS


def has_text_box(frame):
    x0, x1 = config.TEXT_BOX_BORDER_X_RANGE
    border = frame[config.TEXT_BOX_BORDER_Y, x0:x1:4]
    dark_ratio = float(np.count_nonzero(_dark_mask(border, config.TEXT_DARK_MAX))) / max(1, len(border))
    if dark_ratio < config.TEXT_BORDER_DARK_RATIO:
        return False

    ix0, iy0, ix1, iy1 = config.TEXT_BOX_INTERIOR
    interior = frame[iy0:iy1:8, ix0:ix1:8]
    bright = (interior > config.TEXT_BRIGHT_MIN).all(axis=-1)
    return float(np.count_nonzero(bright)) / max(1, bright.size) >= config.TEXT_INTERIOR_BRIGHT_RATIO


def has_continue_arrow(frame):
    low, high = config.CONTINUE_ARROW_DARK_RANGE
    r = config.CONTINUE_ARROW_RADIUS
    for cx, cy in config.CONTINUE_ARROW_POINTS:
        window = _clip_region(frame, cx - r, cy - r, cx + r + 1, cy + r + 1)
        dark = int(np.count_nonzero(_dark_mask(window, config.TEXT_DARK_MAX)))
        if low <= dark <= high:
            return True
    return False


def find_selection_arrow(frame):
    low, high = config.SELECTION_ARROW_DARK_RANGE
    x0, x1 = config.SELECTION_ARROW_X_RANGE
    r = config.SELECTION_ARROW_Y_RADIUS
    for index, row in enumerate(config.SELECTION_ARROW_ROWS):
        window = _clip_region(frame, x0, row - r, x1, row + r + 1)
        dark = int(np.count_nonzero(_dark_mask(window, config.TEXT_DARK_MAX)))
        if low <= dark <= high:
            return index
    return -1


def has_yes_no_prompt(frame):
    x0, x1 = config.YES_NO_BORDER_X_RANGE
    total = 0
    for row in config.YES_NO_BORDER_ROWS:
        if row >= frame.shape[0]:
            continue
        total += int(np.count_nonzero(_near_mask(frame[row, x0:x1], 0, config.BLACK_TOLERANCE)))
    return total > config.YES_NO_BORDER_MIN_PIXELS


def has_battle_panel(frame):
    x, y, w, h = config.BATTLE_REGION
    region = _clip_region(frame, x, y, x + w, y + h)
    white = int(np.count_nonzero(_near_mask(region, config.WHITE_VALUE, config.BATTLE_WHITE_TOLERANCE)))
    return white > config.BATTLE_WHITE_MIN_PIXELS and has_menu_box(frame, *config.BATTLE_MENU_BOX)


@dataclass(frozen=True)
class StateTemplate:
    name: str
    template: object
    state: GameStateType
    battle_phase: BattlePhase = BattlePhase.NONE
    menu_type: MenuType = MenuType.NONE
    min_confidence: float = 0.9
    region: tuple | None = None


class BaseStateDetector:
    black_screen_samples = 100

    def __init__(self, rng=None):
        self.rng = rng or random.Random(config.CLASSIFIER_SEED)
        self._previous_frame = None

    def classify(self, frame):
        if is_black_screen(frame, self.rng, self.black_screen_samples):
            self._previous_frame = frame
            return Classification(state=GameStateType.BLACK_SCREEN)

        selection_index = find_selection_arrow(frame)
        indicators = {
            "has_continue_arrow": has_continue_arrow(frame),
            "has_selection_arrow": selection_index >= 0,
            "selection_index": selection_index,
            "has_yes_no_prompt": has_yes_no_prompt(frame),
        }
        result = self._classify_visible(frame, indicators)
        self._previous_frame = frame
        return result

    def _classify_visible(self, frame, indicators):
        raise NotImplementedError

    def _is_walking(self, frame):
        if self._previous_frame is None:
            return False
        return frame_similarity(frame, self._previous_frame) < config.SIMILARITY_THRESHOLD

    def reset(self):
        self._previous_frame = None


class HeuristicStateDetector(BaseStateDetector):
    black_screen_samples = config.BLACK_SCREEN_SAMPLES

    def _classify_visible(self, frame, indicators):
        text_box = has_text_box(frame)

        if has_battle_panel(frame):
            return Classification(
                state=GameStateType.BATTLE,
                battle_phase=self._battle_phase(frame, text_box, indicators["has_selection_arrow"]),
                **indicators,
            )

        menu_type = self._menu_type(frame)
        if menu_type is not MenuType.NONE:
            return Classification(state=GameStateType.MENU, menu_type=menu_type, **indicators)

        if text_box:
            return Classification(state=GameStateType.DIALOGUE, **indicators)

        return Classification(state=GameStateType.OVERWORLD, is_walking=self._is_walking(frame), **indicators)

    def _battle_phase(self, frame, text_box, selection):
        if text_box and selection:
            if has_menu_box(frame, *config.BATTLE_ACTION_BOX):
                return BattlePhase.ACTION_SELECTION
            if has_menu_box(frame, *config.BATTLE_MOVE_BOX):
                return BattlePhase.MOVE_SELECTION
        if text_box:
            return BattlePhase.TEXT
        return BattlePhase.ANIMATION

    def _menu_type(self, frame):
        if has_menu_box(frame, *config.START_MENU_BOX):
            return MenuType.START_MENU
        if has_menu_box(frame, *config.FULL_MENU_BOX):
            return MenuType.BAG
        if has_menu_box(frame, *config.YES_NO_BOX):
            return MenuType.YES_NO
        return MenuType.NONE


class TemplateStateDetector(BaseStateDetector):
    black_screen_samples = config.TEMPLATE_BLACK_SCREEN_SAMPLES

    def __init__(self, templates, matcher=None, rng=None):
        super().__init__(rng)
        self.templates = list(templates)
        self.matcher = matcher or ImageMatcher()
        if not self.templates:
            logger.warning("Template detector has no templates; frames default to overworld")

    def _best_match(self, frame):
        best = None
        for state_template in self.templates:
            result = self.matcher.find_template(
                frame,
                state_template.template,
                state_template.min_confidence,
                region=state_template.region,
                template_name=state_template.name,
            )
            if not result.found:
                continue
            key = (STATE_PRECEDENCE[state_template.state], -result.confidence)
            if best is None or key < best[0]:
                best = (key, state_template, result.confidence)
        return best

    def _classify_visible(self, frame, indicators):
        best = self._best_match(frame)
        if best is not None:
            _, state_template, confidence = best
            return Classification(
                state=state_template.state,
                battle_phase=state_template.battle_phase,
                menu_type=state_template.menu_type,
                matched_template=state_template.name,
                confidence=confidence,
                **indicators,
            )

        if has_text_box(frame):
            return Classification(state=GameStateType.DIALOGUE, **indicators)

        return Classification(state=GameStateType.OVERWORLD, is_walking=self._is_walking(frame), **indicators)


def state_templates_from_definitions(loaded, definitions):
    templates = []
    for name, definition in definitions.items():
        template = loaded.get(name)
        if template is None:
            continue
        region = definition.get("region")
        templates.append(
            StateTemplate(
                name=name,
                template=template,
                state=GameStateType(definition.get("state", "overworld")),
                battle_phase=BattlePhase(definition.get("battle_phase", "none")),
                menu_type=MenuType(definition.get("menu_type", "none")),
                min_confidence=float(definition.get("min_confidence", 0.9)),
                region=tuple(region) if region else None,
            )
        )
    return templates


def build_state_detector(strategy=None, rng=None, templates_dir=None, definitions=None, matcher=None, scanner=None):
    strategy = (strategy or config.STATE_DETECTOR).lower()
    if strategy == "heuristic":
        return HeuristicStateDetector(rng=rng)
    if strategy == "template":
        matcher = matcher or ImageMatcher()
        scanner = scanner or AssetScanner(matcher)
        definitions = definitions if definitions is not None else config.STATE_TEMPLATES
        loaded = scanner.scan(templates_dir or config.TEMPLATES_DIR, names=list(definitions))
        templates = state_templates_from_definitions(loaded, definitions)
        logger.info(f"Template detector ready with {len(templates)}/{len(definitions)} templates")
        return TemplateStateDetector(templates, matcher=matcher, rng=rng)
    raise ValueError(f"Unknown state detector strategy: {strategy}")
