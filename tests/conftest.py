import os
import tempfile

import pytest

from tnb_chat.utils import logger


@pytest.fixture(autouse=True, scope="session")
def _log_to_temp_file():
    fd, path = tempfile.mkstemp(prefix="tnb_chat_test_", suffix=".log")
    os.close(fd)
    logger.set_log_file(path)
    yield path
    os.remove(path)
