"""Approval engine constants - validation limits and metric names."""

# Validation limits
MIN_SCORE = 0
MAX_SCORE = 100
MIN_THRESHOLD = 0
MAX_THRESHOLD = 100
MIN_ATTEMPTS = 1
MAX_ATTEMPTS = 10

# Rule defaults for administrative creation
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_ERROR_CARRYOVER = True

# Metric samples written per evaluation
METRIC_ACCURACY = "accuracy"
METRIC_ATTEMPTS = "attempts"
METRIC_SPEED = "speed"

# History paging
DEFAULT_HISTORY_LIMIT = 10
SUMMARY_HISTORY_LIMIT = 100

# Cache key prefixes
RULES_CACHE_PREFIX = "rules"
CHAPTER_STATS_CACHE_PREFIX = "chapter_stats"

# can_attempt reasons
REASON_ALREADY_APPROVED = "Chapter already approved"
REASON_MAX_ATTEMPTS = "Maximum attempts exceeded"
