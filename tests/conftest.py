import os
import sys


# Ensure `src/` is importable as top-level for `common.*`, `entities.*` etc.
# Done at import time so nested conftest modules can import from it too.
_ROOT = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
_SRC_PATH = os.path.join(_ROOT, "src")
if _SRC_PATH not in sys.path:
    sys.path.insert(0, _SRC_PATH)
