from __future__ import annotations

import logging
import re

LOGGER = logging.getLogger("ticketly.api")

DEFAULT_API_BASE_URL = "http://localhost:5001/api"
DEFAULT_TIMEOUT_SECONDS = 60.0
DEFAULT_TOKEN_STORE_PATH = ".ticketly_tokens.json"

REFRESH_TOKEN_PATH = "/auth/refresh-token"
# Routes that run before a session exists; a 401 there means bad credentials.
BOOTSTRAP_ROUTE_PATTERN = re.compile(r"/auth/(login|signup|verify-otp)")
