STATE_DIR_NAME = ".taskboard"
CONFIG_FILE = "config.yaml"
STORE_FILE = "board.yaml"
STORE_LOCK_FILE = "board.lock"
ARTIFACTS_DIR = "artifacts"
EVENTS_FILE = "task_events.jsonl"

STORE_VERSION = 1
LOCK_TIMEOUT = 30  # seconds

DEFAULT_RECOMMENDATION_LIMIT = 5
MAX_RECOMMENDATION_LIMIT = 50
DEFAULT_RECOMMENDER_TIMEOUT = 10.0  # seconds
RECOMMENDER_URL_ENV = "TASKBOARD_RECOMMENDER_URL"

DEFAULT_ARCHIVE_DRAIN_TIMEOUT = 5.0  # seconds

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100
MAX_PROJECT_PAGE_SIZE = 50

DEFAULT_LOG_LEVEL = "INFO"
