"""
pytest loads conftest.py automatically before collecting tests.

Putting src/ on sys.path here lets every test module import langchain_recall
directly, without installing the package first.
"""

import sys
from pathlib import Path

# Add src directory to PYTHONPATH
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))
