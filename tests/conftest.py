"""
Shared test configuration.

Settings are instantiated at import time, so the environment is prepared
before any application module is imported. Backends default to the
in-process implementations.
"""

import os

os.environ.setdefault("ADMIN_API_KEY", "test_admin_key")
os.environ["DATABASE_URL"] = ""
os.environ["REDIS_URL"] = ""
