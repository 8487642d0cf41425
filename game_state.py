from dataclasses import dataclass
from enum import Enum


class GameStateType(Enum):
    UNKNOWN = "unknown"
    OVERWORLD = "overworld"
    BATTLE = "battle"
    MENU = "menu"
    DIALOGUE = "dialogue"
    BLACK_SCREEN = "black_screen"
    TITLE = "title"


class BattlePhase(Enum):
    NONE = "none"
    ACTION_SELECTION = "action_selection"
    MOVE_SELECTION = "move_selection"
    ITEM_SELECTION = "item_selection"
    POKEMON_SELECTION = "pokemon_selection"
    ANIMATION = "animation"
    TEXT = "text"


class MenuType(Enum):
    NONE = "none"
    START_MENU = "start_menu"
    BAG = "bag"
    POKEMON = "pokemon"
    SAVE = "save"
    OPTIONS = "options"
    POKEDEX = "pokedex"
    SHOP = "shop"
    PC = "pc"
    YES_NO = "yes_no"


@dataclass(frozen=True)
class Classification:
    state: GameStateType = GameStateType.OVERWORLD
    battle_phase: BattlePhase = BattlePhase.NONE
    menu_type: MenuType = MenuType.NONE
    has_continue_arrow: bool = False
    has_selection_arrow: bool = False
    selection_index: int = -1
    has_yes_no_prompt: bool = False
    is_walking: bool = False
    matched_template: str | None = None
    confidence: float = 1.0

    @property
    def requires_input(self):
        return self.has_continue_arrow or self.has_selection_arrow or self.has_yes_no_prompt

    @property
    def is_dismissible(self):
        return self.state in (GameStateType.DIALOGUE, GameStateType.MENU)

    def __str__(self):
        parts = [self.state.value]
        if self.battle_phase is not BattlePhase.NONE:
            parts.append(self.battle_phase.value)
        if self.menu_type is not MenuType.NONE:
            parts.append(self.menu_type.value)
        if self.has_continue_arrow:
            parts.append("continue")
        if self.has_selection_arrow:
            parts.append(f"select[{self.selection_index}]")
        if self.has_yes_no_prompt:
            parts.append("yes/no")
        return "/".join(parts)
