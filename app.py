#!/usr/bin/env python3
import atexit
import os
import sys
from wyne import create_app, BIND, PORT, LOG_LEVEL, LOG_FILE
from wyne.context import WyneContext
from wyne.logger import parse_level, setup_logging

def _resolve_data_root():
    if len(sys.argv) >= 2:
        return os.path.abspath(sys.argv[1])
    return os.environ.get("WYNE_HOME") or None

if __name__ == "__main__":
    setup_logging(parse_level(LOG_LEVEL), LOG_FILE)
    context = WyneContext.create(_resolve_data_root())
    atexit.register(context.shutdown)
    app = create_app(context)
    app.run(host=BIND, port=PORT, debug=False)
