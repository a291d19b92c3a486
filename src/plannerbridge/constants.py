"""Magic number constants used throughout the plannerbridge codebase.

This module centralizes numeric values that would otherwise be magic numbers,
improving code readability and maintainability.
"""

# Graph API
GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
DEFAULT_REQUEST_TIMEOUT_SECONDS = 30

# Retry and throttling constants
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BASE_SECONDS = 2.0
DEFAULT_RATE_LIMIT_WAIT_SECONDS = 30.0
DEFAULT_THROTTLE_DELAY_MS = 500

# Error report
MAX_FAILURE_EXAMPLES_PER_KIND = 10

# Exit codes (automation contract)
EXIT_SUCCESS = 0
EXIT_PARTIAL_FAILURE = 1
EXIT_PLAN_FAILURE = 2
EXIT_INTERRUPTED = 130

# Planner limits
CHECKLIST_TITLE_MAX = 100
MAX_PLAN_CATEGORIES = 25

# Default ordering hint accepted by Planner for "place at the end"
DEFAULT_ORDER_HINT = " !"

# Percentage calculations
PERCENTAGE_MULTIPLIER = 100.0
