APP_NAME = "Ground Session Service"
APP_VERSION = "0.4.0"
DEFAULT_DB_PATH = "ground_state.db"
DEFAULT_CORS_ALLOW_ORIGINS = [
	"http://localhost",
	"http://127.0.0.1",
	"http://localhost:3000",
]
DEFAULT_TRUSTED_HOSTS = [
	"127.0.0.1",
	"localhost",
	"testserver",
]
DEFAULT_SERVER_HOST = "127.0.0.1"
DEFAULT_SERVER_PORT = 8765
SQLITE_BUSY_TIMEOUT_MS = 5000

STATE_SLOT_KEY = "ground.sessions.v2"
LEGACY_SESSION_SLOT_KEY = "tft.session.v1"
STATE_SCHEMA_VERSION = 2

DEFAULT_OLLAMA_BASE_URL = "http://localhost:11434"
DEFAULT_OLLAMA_MODEL = "qwen2.5-coder:3b"
DEFAULT_OLLAMA_TIMEOUT_S = 60.0
HEALTH_CHECK_TIMEOUT_S = 5.0

SESSION_MODES = ("bugfix", "feature", "refactor", "standard", "learning", "fast")
MODE_LABELS = {
	"bugfix": "Bugfix",
	"feature": "Feature",
	"refactor": "Refactor",
	"standard": "Standard",
	"learning": "Learning",
	"fast": "Fast",
}
EVIDENCE_TYPES = ("file", "symbol", "selection", "diagnostic", "testLog", "diff", "link")
EVIDENCE_SOURCES = ("user", "auto", "ai")
PROVOCATION_KINDS = (
	"Counterexample",
	"Hidden Assumption",
	"Trade-off",
	"Security",
	"Performance",
	"Test Gap",
)
SEVERITIES = ("low", "med", "high")
DECISIONS = ("accept", "hold", "reject")
INSIGHT_KINDS = ("Implementation", "Risk", "Test", "Performance", "Security", "Search")
SUGGESTION_ACTIONS = ("addActiveFile", "addSelection", "addDiagnostics", "ingestTestLog")

SELECTION_SNIPPET_MAX_CHARS = 4000
TEST_LOG_SNIPPET_MAX_CHARS = 6000
DIAGNOSTICS_TOP_N = 10
EVIDENCE_PACK_DIAGNOSTICS_TOP_N = 8

MAX_PROVOCATION_CARDS = 7
PROVOCATION_EVIDENCE_REFS = 3
TEMPLATE_EVIDENCE_REFS = 2
PROVOCATION_SUMMARY_EVIDENCE = 5
MAX_INSIGHTS = 12
MAX_INSIGHT_QUERIES = 6
MAX_SUGGESTIONS = 6
INSIGHT_SUMMARY_EVIDENCE = 15
