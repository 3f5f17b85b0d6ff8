"""Configuration constants for diyalekto application."""

from pathlib import Path

PROJECT_ROOT = Path(__file__).parent.parent
DEFAULT_CONTENT_PATH = PROJECT_ROOT / 'data' / 'content.json'

# Quiz session construction
QUIZ_SESSION_SIZE = 6         # Questions drawn per attempt
MIN_QUESTION_BANK = 5         # Below this, vocabulary questions are synthesized
VOCAB_QUESTION_LIMIT = 8      # Max vocabulary items turned into questions
VOCAB_DISTRACTOR_COUNT = 3    # Wrong options per vocabulary question
VOCAB_QUESTION_POINTS = 10

# Attempts per lesson visit (client-side rule, not persisted)
MAX_QUIZ_ATTEMPTS = 3

# Achievement thresholds
SPEED_DEMON_MS = 300_000      # 5 minutes from quiz start to submission
EARLY_BIRD_HOUR = 8           # Completed before 08:00
NIGHT_OWL_HOUR = 22           # Completed at or after 22:00
POLYGLOT_DIALECT_COUNT = 4
DIALECT_EXPLORER_COUNT = 3
QUIZ_MASTER_THRESHOLD = 90
QUIZ_MASTER_REQUIRED = 5
PERFECTIONIST_RUN = 3
COMEBACK_FROM_SCORE = 60
CONSISTENT_STREAK_DAYS = 7

# Levels
POINTS_PER_LEVEL = 500

# Number of recent quiz percentages kept per user
RECENT_SCORE_WINDOW = 20

# Lesson sessions untouched for this long are dropped by the server
SESSION_IDLE_SECONDS = 2 * 60 * 60
