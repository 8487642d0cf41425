import random

import cv2
import numpy as np
import pytest

from game_state import BattlePhase, GameStateType, MenuType
from image_matcher import ImageMatcher
from state_detector import (
    HeuristicStateDetector,
    StateTemplate,
    TemplateStateDetector,
    build_state_detector,
    has_continue_arrow,
    has_text_box,
)

GREY = 120
WHITE = 248


def overworld_frame(value=GREY):
    return np.full((144, 160, 3), value, dtype=np.uint8)


def dialogue_frame():
    frame = overworld_frame()
    frame[96:144, :] = WHITE
    frame[96, :] = 0
    return frame


def battle_frame():
    frame = np.full((144, 160, 3), WHITE, dtype=np.uint8)
    frame[96, :] = 0
    frame[143, :] = 0
    return frame


def start_menu_frame():
    frame = overworld_frame()
    frame[0:120, 104:160] = WHITE
    frame[0, 104:160] = 0
    frame[119, 104:160] = 0
    return frame


def block_patch(seed=7, blocks=4, block_size=4):
    colors = np.random.default_rng(seed).integers(0, 256, (blocks, blocks, 3), dtype=np.uint8)
    return np.repeat(np.repeat(colors, block_size, axis=0), block_size, axis=1)


def heuristic():
    return HeuristicStateDetector(rng=random.Random(42))


@pytest.mark.unit
class TestHeuristicDetector:
    def test_black_screen_takes_precedence(self):
        result = heuristic().classify(np.zeros((144, 160, 3), dtype=np.uint8))
        assert result.state is GameStateType.BLACK_SCREEN

    def test_plain_frame_defaults_to_overworld(self):
        result = heuristic().classify(overworld_frame())
        assert result.state is GameStateType.OVERWORLD
        assert result.has_continue_arrow is False
        assert result.has_selection_arrow is False
        assert result.selection_index == -1
        assert result.is_walking is False

    def test_walking_flag_on_changed_overworld(self):
        detector = heuristic()
        detector.classify(overworld_frame(GREY))
        assert detector.classify(overworld_frame(200)).is_walking is True
        assert detector.classify(overworld_frame(200)).is_walking is False

    def test_dialogue_with_continue_arrow(self):
        frame = dialogue_frame()
        frame[134:137, 150:155] = 0
        result = heuristic().classify(frame)
        assert result.state is GameStateType.DIALOGUE
        assert result.has_continue_arrow is True
        assert result.is_dismissible is True

    def test_battle_action_selection(self):
        result = heuristic().classify(battle_frame())
        assert result.state is GameStateType.BATTLE
        assert result.battle_phase is BattlePhase.ACTION_SELECTION
        assert result.has_selection_arrow is True

    def test_start_menu(self):
        result = heuristic().classify(start_menu_frame())
        assert result.state is GameStateType.MENU
        assert result.menu_type is MenuType.START_MENU

    def test_yes_no_prompt_indicator(self):
        frame = overworld_frame()
        frame[64, 104:152] = 0
        frame[102, 104:152] = 0
        result = heuristic().classify(frame)
        assert result.has_yes_no_prompt is True
        assert result.requires_input is True


@pytest.mark.unit
class TestIndicators:
    def test_text_box_needs_bright_interior(self):
        frame = overworld_frame()
        frame[96, :] = 0
        assert has_text_box(frame) is False
        assert has_text_box(dialogue_frame()) is True

    def test_continue_arrow_rejects_large_dark_blobs(self):
        frame = dialogue_frame()
        frame[120:144, 136:160] = 0
        assert has_continue_arrow(frame) is False


@pytest.mark.unit
class TestTemplateDetector:
    def make_template(self, matcher, state, name="BattleHP"):
        return StateTemplate(name=name, template=matcher.from_array(block_patch()), state=state, min_confidence=0.85)

    def test_template_match_sets_state(self):
        matcher = ImageMatcher()
        frame = overworld_frame()
        frame[30:46, 40:56] = block_patch()
        detector = TemplateStateDetector([self.make_template(matcher, GameStateType.BATTLE)], matcher=matcher, rng=random.Random(1))

        result = detector.classify(frame)
        assert result.state is GameStateType.BATTLE
        assert result.matched_template == "BattleHP"
        assert result.confidence == pytest.approx(1.0)

    def test_battle_beats_menu_when_both_match(self):
        matcher = ImageMatcher()
        frame = overworld_frame()
        frame[30:46, 40:56] = block_patch()
        templates = [
            self.make_template(matcher, GameStateType.MENU, name="PC"),
            self.make_template(matcher, GameStateType.BATTLE, name="BattleHP"),
        ]
        result = TemplateStateDetector(templates, matcher=matcher).classify(frame)
        assert result.state is GameStateType.BATTLE

    def test_black_screen_before_templates(self):
        matcher = ImageMatcher()
        detector = TemplateStateDetector([self.make_template(matcher, GameStateType.BATTLE)], matcher=matcher)
        result = detector.classify(np.zeros((144, 160, 3), dtype=np.uint8))
        assert result.state is GameStateType.BLACK_SCREEN

    def test_no_templates_falls_back_to_text_box_then_overworld(self):
        detector = TemplateStateDetector([])
        assert detector.classify(dialogue_frame()).state is GameStateType.DIALOGUE
        assert detector.classify(overworld_frame()).state is GameStateType.OVERWORLD

    def test_build_from_templates_directory(self, tmp_path):
        cv2.imwrite(str(tmp_path / "YES.png"), cv2.cvtColor(block_patch(), cv2.COLOR_RGB2BGR))
        definitions = {
            "YES": {"state": "menu", "menu_type": "yes_no", "min_confidence": 0.9, "region": None},
            "PC": {"state": "menu", "menu_type": "pc", "min_confidence": 0.9, "region": None},
        }
        detector = build_state_detector("template", templates_dir=tmp_path, definitions=definitions)
        assert [t.name for t in detector.templates] == ["YES"]

        frame = overworld_frame()
        frame[60:76, 100:116] = block_patch()
        result = detector.classify(frame)
        assert result.state is GameStateType.MENU
        assert result.menu_type is MenuType.YES_NO

    def test_unknown_strategy(self):
        with pytest.raises(ValueError):
            build_state_detector("psychic")
