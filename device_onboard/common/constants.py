"""Application constants."""

USER_AGENT = "device-onboard/1.0 (+registry upload)"

RESULT_SUCCESS = "Success"
RESULT_FAILED = "Failed"
RESULT_ACCEPTED = "Accepted"
RESULT_SKIPPED = "Skipped"
RESULTS = (RESULT_SUCCESS, RESULT_FAILED, RESULT_ACCEPTED, RESULT_SKIPPED)

STATUS_COMPLETE = "Complete"
STATUS_DUPLICATE = "Duplicate"
STATUS_UPLOAD_ERROR = "UploadError"
STATUS_IMPORT_ERROR = "ImportError"
STATUS_QUEUED = "Queued"
STATUS_VALIDATION = "Validation"
STATUS_SHUTDOWN = "Shutdown"

IMPORT_SUCCESS_STATES = frozenset({"complete", "completed", "success"})
IMPORT_ERROR_STATES = frozenset({"error", "failed"})
ALREADY_ASSIGNED_MARKERS = ("already assigned", "ztddevicealreadyassigned")

DEFAULT_POLL_INTERVAL_SECONDS = 15
DEFAULT_MAX_POLL_ATTEMPTS = 20
DEFAULT_PAGE_SIZE = 100
DEFAULT_MAX_PAGES = 25

COMMANDS = (
    "upload",
    "retry",
    "check",
    "import-status",
    "delete-import",
    "clear-failed",
)
EXIT_SUCCESS = 0
EXIT_PARTIAL = 10
EXIT_BLOCKED = 11
EXIT_HARD_FAIL = 20
JSON_LOG_FIELDS = (
    "timestamp",
    "run_id",
    "stage",
    "serial",
    "event",
    "status",
    "attempt",
    "import_id",
    "duration_ms",
    "error_code",
    "message",
)
