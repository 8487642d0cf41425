###############################
###    WINDOW & UI SETTINGS   ###
###############################

# WINDOW_TITLE: Substring of the emulator window title. The first visible
# window whose title contains any of WINDOW_TITLE_PATTERNS is used when empty.
WINDOW_TITLE = ""
WINDOW_TITLE_PATTERNS = ["EmuHawk", "BizHawk", "mGBA", "VisualBoyAdvance", "VBA"]

# Logical resolution of the game screen. Captures are rescaled to this size.
GAME_WIDTH = 160
GAME_HEIGHT = 144

# Debug and Visualization Settings
DEBUG = False


###############################
###  DIRECTORY & FILE PATHS ###
###############################

TEMPLATES_DIR = "templates"
DATA_DIR = "data"
LOGS_DIR = "logs"

TILE_DATABASE_FILE = "data/tiles.json"
MAP_DATA_FILE = "data/learned_data.json"


###############################
###    TILES & SIGNATURES    ###
###############################

# 16 px tiles give a 10x9 grid, 8 px tiles a 20x18 grid
TILE_SIZE = 16
PLAYER_TILE_X = 4
PLAYER_TILE_Y = 4

# Rolling hash parameters shared by tile and frame signatures
SIGNATURE_SEED = 17
SIGNATURE_MULTIPLIER = 31
SIGNATURE_QUANTIZATION = 8
TILE_SAMPLES_PER_AXIS = 8
FRAME_SIGNATURE_STRIDE = 10

# Pixel brightness is (R + G + B) // 3
DARK_BRIGHTNESS = 40
BLACK_BRIGHTNESS = 10
BLACK_TILE_RATIO = 0.9

# Edge tiles darker than this look like doorways/exits
EXIT_DARK_RATIO = 0.5
EXIT_BLACK_RATIO = 0.3

# Perceptual hash grid edge (8 -> 64 bit hash)
PERCEPTUAL_HASH_SIZE = 8

# Frame similarity used for the walking flag
SIMILARITY_STRIDE = 4
SIMILARITY_PIXEL_TOLERANCE = 30
SIMILARITY_THRESHOLD = 0.95


###############################
###    STATE CLASSIFIER     ###
###############################

# "heuristic" (pixel region rules) or "template" (reference images)
STATE_DETECTOR = "heuristic"
CLASSIFIER_SEED = 42

BLACK_SCREEN_SAMPLES = 100
TEMPLATE_BLACK_SCREEN_SAMPLES = 50
BLACK_SCREEN_RATIO = 0.9
BLACK_PIXEL_MAX = 20

WHITE_VALUE = 248
BLACK_TOLERANCE = 20
WHITE_TOLERANCE = 30
BATTLE_WHITE_TOLERANCE = 20

# Menu box sampling: border every 4 px, interior every 8 px
MENU_BORDER_MIN_HITS = 5
MENU_INTERIOR_MIN_HITS = 3

# Battle screen: bright status panel in the top left plus the bottom box
BATTLE_REGION = (0, 16, 80, 16)
BATTLE_WHITE_MIN_PIXELS = 200
BATTLE_MENU_BOX = (0, 96, 160, 48)
BATTLE_ACTION_BOX = (80, 96, 80, 48)
BATTLE_MOVE_BOX = (0, 48, 160, 96)

START_MENU_BOX = (104, 0, 56, 120)
FULL_MENU_BOX = (0, 0, 160, 144)
YES_NO_BOX = (104, 64, 48, 40)

# Text box rows and thresholds
TEXT_BOX_BORDER_Y = 96
TEXT_BOX_BORDER_X_RANGE = (8, 152)
TEXT_BOX_INTERIOR = (16, 104, 144, 136)
TEXT_DARK_MAX = 50
TEXT_BRIGHT_MIN = 200
TEXT_BORDER_DARK_RATIO = 0.55
TEXT_INTERIOR_BRIGHT_RATIO = 0.5

# Arrow windows; counts outside the range are rejected as accidental matches
CONTINUE_ARROW_POINTS = [(152, 136), (144, 136), (148, 132), (152, 128)]
CONTINUE_ARROW_RADIUS = 3
CONTINUE_ARROW_DARK_RANGE = (10, 30)
SELECTION_ARROW_ROWS = [16, 32, 48, 64, 80, 96, 104, 112, 120]
SELECTION_ARROW_X_RANGE = (8, 16)
SELECTION_ARROW_Y_RADIUS = 2
SELECTION_ARROW_DARK_RANGE = (8, 25)

# Yes/No prompt border rows
YES_NO_BORDER_ROWS = (64, 102)
YES_NO_BORDER_X_RANGE = (104, 152)
YES_NO_BORDER_MIN_PIXELS = 60


###############################
###    TEMPLATE MATCHING    ###
###############################

TEMPLATE_TOLERANCE = 30
TEMPLATE_SAMPLE_STEP = 2
TEMPLATE_EARLY_EXIT = 0.98
TEMPLATE_REFINE = True

# File stem -> classification it implies. region is (x, y, w, h) or None.
STATE_TEMPLATES = {
    "BattleHP": {"state": "battle", "battle_phase": "none", "menu_type": "none", "min_confidence": 0.85, "region": None},
    "BattleFight": {"state": "battle", "battle_phase": "action_selection", "menu_type": "none", "min_confidence": 0.9, "region": (80, 96, 80, 48)},
    "WILD": {"state": "battle", "battle_phase": "text", "menu_type": "none", "min_confidence": 0.9, "region": (0, 96, 160, 48)},
    "Appeared": {"state": "battle", "battle_phase": "text", "menu_type": "none", "min_confidence": 0.85, "region": (0, 96, 160, 48)},
    "YES": {"state": "menu", "battle_phase": "none", "menu_type": "yes_no", "min_confidence": 0.9, "region": None},
    "PC": {"state": "menu", "battle_phase": "none", "menu_type": "pc", "min_confidence": 0.85, "region": None},
}


###############################
###    WALKABILITY STORE    ###
###############################

MIN_ATTEMPTS_FOR_CLASSIFICATION = 3
HIGH_CONFIDENCE_ATTEMPTS = 5
DEFAULT_CONFIDENCE = 0.5

TILE_AUTOSAVE_INTERVAL = 10.0
MAP_AUTOSAVE_INTERVAL = 60.0

# Per-map coordinate tracking, independent of the signature store
COORDINATE_MAP_ENABLED = False
DEFAULT_MAP_ID = "unknown"


###############################
###   EXPLORATION POLICY    ###
###############################

STUCK_THRESHOLD = 2
LOOP_WINDOW = 10
LOOP_THRESHOLD = 3
MOVE_HISTORY_LIMIT = 50
MOVE_HISTORY_TRIM_TO = 25
EXIT_TRIED_PENALTY = 10.0

# Random substitutions rolled once per exploration cycle
INTERACT_PROBABILITY = 0.05
CANCEL_PROBABILITY = 0.03

DISCOVERY_MODE = False
DISCOVERY_FAIL_LIMIT = 3
FORCED_NEGATIVE_OBSERVATIONS = 5

# Tile signatures that mark a dismissible text box on screen
DISMISS_TILE_SIGNATURES = []

POLICY_SEED = None


###############################
###   TIMING & KEYBOARD     ###
###############################

KEY_PRESS_DURATION = 0.05
INPUT_DELAY = 0.1
MOVEMENT_DELAY = 0.3
MENU_CLOSE_DELAY = 0.5
ERROR_PAUSE = 1.0
INPUT_FAILURE_PAUSE = 1.0
PAUSED_POLL_INTERVAL = 0.1
SHUTDOWN_TIMEOUT = 2.0

# Virtual-key codes: A -> X, B -> Z, Start -> Enter
KEY_CONFIRM = 0x58
KEY_CANCEL = 0x5A
KEY_MENU = 0x0D
KEY_UP = 0x26
KEY_DOWN = 0x28
KEY_LEFT = 0x25
KEY_RIGHT = 0x27

# Bring the emulator to the foreground before each key press
FOCUS_WINDOW_BEFORE_INPUT = True


###############################
###  NOTIFICATIONS          ###
###############################

EVENT_QUEUE_SIZE = 256

TELEGRAM_ENABLED = False
TELEGRAM_BOT_TOKEN = ""
TELEGRAM_CHAT_ID = ""
TELEGRAM_TIMEOUT = 5.0
TELEGRAM_TILE_MILESTONE = 50
