import sys
from pathlib import Path

SRC = Path(__file__).resolve().parents[1] / "src"
TESTS = Path(__file__).resolve().parent

sys.path.insert(0, str(SRC))
sys.path.insert(0, str(TESTS))
