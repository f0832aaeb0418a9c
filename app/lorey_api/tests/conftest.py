import os
import sys
from pathlib import Path

# Ensure repository root is importable when pytest changes working dir
ROOT = Path(__file__).resolve().parents[3]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

# The Flask app reads its config class at import time
os.environ["FLASK_ENV"] = "testing"
