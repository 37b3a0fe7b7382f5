from pathlib import Path
import sys

# Ensure repository root is on sys.path when running this file directly
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from facetloop.gui.app import run_gui

if __name__ == "__main__":
    widget = Path(sys.argv[1]) if len(sys.argv) > 1 else None
    run_gui(widget)
