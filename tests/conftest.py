from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:  # pragma: no cover - test helper
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("GOOGLE_CLIENT_ID", "test-client-id")
os.environ.setdefault("GOOGLE_CLIENT_SECRET", "test-client-secret")
os.environ.setdefault("SDM_PROJECT_ID", "test-project")
os.environ.setdefault("REDIRECT_URI", "https://camrelay.local/oauth/callback")
