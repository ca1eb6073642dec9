"""Entry point: serve the Todo Sync API with uvicorn."""

import sys
from pathlib import Path

# Running from a checkout without installing the package.
sys.path.insert(0, str(Path(__file__).parent / "src"))

from todo_sync.api.main import app  # noqa: E402
from todo_sync.config import get_settings  # noqa: E402

if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)
