import os
import shutil

import pytest

from btcli.tokens import gcloud_command


def pytest_collection_modifyitems(config, items):
    if os.environ.get("RUN_INTEGRATION") == "1":
        return
    skip = pytest.mark.skip(reason="integration tests require RUN_INTEGRATION=1")
    for item in items:
        if item.nodeid.startswith("tests/integration/"):
            item.add_marker(skip)


@pytest.fixture(scope="session")
def gcloud() -> str:
    # Require explicit opt-in.
    if os.environ.get("RUN_INTEGRATION") != "1":
        pytest.skip("set RUN_INTEGRATION=1 to run integration tests")
    cmd = gcloud_command()
    if shutil.which(cmd) is None:
        pytest.skip(f"{cmd} not found on PATH")
    return cmd
