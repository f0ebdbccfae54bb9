"""Allow ``python -m src.server`` to launch the chat proxy."""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[2]))

from src.server.server import main

main()
