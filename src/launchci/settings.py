# settings.py
from __future__ import annotations
import os

API_URL = os.environ.get("LAUNCHCI_API_URL", "http://localhost:8000")
API_TOKEN = os.environ.get("LAUNCHCI_API_TOKEN", "")
TIMEOUT = float(os.environ.get("LAUNCHCI_TIMEOUT", "30"))
DEBUG = os.environ.get("LAUNCHCI_DEBUG", "").lower() in ("1", "true", "yes")
# fromjob recomputation passes per edit are bounded by the job count; this caps it further
MAX_PROPAGATION_PASSES = int(os.environ.get("LAUNCHCI_MAX_PROPAGATION_PASSES", "64"))
