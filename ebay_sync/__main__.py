import os
import sys

from . import create_app
from .config import ConfigError
from .storage import StorageUnavailable
from .utils.logger import error

if __name__ == "__main__":
    try:
        app = create_app()
    except (ConfigError, StorageUnavailable) as e:
        error(f"[startup] {e}")
        sys.exit(1)
    app.run(host="0.0.0.0", port=int(os.getenv("PORT", "3000")))
