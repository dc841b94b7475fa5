"""Application-wide constants.

This module centralizes magic numbers and configuration constants
that are used across multiple modules. For environment-specific
configuration, see config.py.
"""

# =============================================================================
# Pagination Defaults
# =============================================================================

# Default page size for list endpoints
DEFAULT_PAGE_SIZE: int = 20

# Maximum page size to prevent abuse
MAX_PAGE_SIZE: int = 100

# =============================================================================
# Certificates
# =============================================================================

# Rendered artifact format
CERTIFICATE_MIME_TYPE: str = "application/pdf"
CERTIFICATE_FILE_EXTENSION: str = ".pdf"

# Random part of a verification code (hex characters)
VERIFICATION_CODE_RANDOM_LENGTH: int = 8

# Frontend path for the public verification page, relative to FRONTEND_URL
VERIFICATION_PATH: str = "/verify"

# Failure reasons are truncated before being stored on the record
FAILURE_REASON_MAX_LENGTH: int = 500

# Number of courses returned in analytics "top courses"
ANALYTICS_TOP_COURSES_LIMIT: int = 10

# Months of history in analytics "issued by month"
ANALYTICS_MONTHS_BACK: int = 12

# =============================================================================
# Rate limits
# =============================================================================

VERIFY_RATE_LIMIT: str = "30/minute"
ADMIN_BATCH_RATE_LIMIT: str = "5/minute"
