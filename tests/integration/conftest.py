import sys
from pathlib import Path

import pytest


def pytest_collection_modifyitems(items: list[pytest.Item]) -> None:
    for item in items:
        if Path(item.path).is_relative_to(Path(__file__).parent):
            item.add_marker(pytest.mark.integration)
            if sys.platform == "win32":
                item.add_marker(pytest.mark.skip(reason="fake server launch script is POSIX sh"))
