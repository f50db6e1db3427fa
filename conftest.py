"""Global pytest configuration."""

import os

# Keep tests independent of a developer's .env and persisted tokens
os.environ.setdefault("TOKEN_STORE", "memory")
os.environ.setdefault("SELECTION_DEBOUNCE_MS", "10")
