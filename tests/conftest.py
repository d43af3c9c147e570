from __future__ import annotations

import sys
from pathlib import Path

import pytest


def _find_repo_root(start: Path) -> Path:
    cur = start.resolve()
    for candidate in [cur, *cur.parents]:
        if (candidate / "breathos").is_dir() and (candidate / "tests").is_dir():
            return candidate
    return cur


repo_root = _find_repo_root(Path(__file__).parent)
repo_root_str = str(repo_root)
if repo_root_str not in sys.path:
    sys.path.insert(0, repo_root_str)

from breathos.runtime.events import LoadProtocol, StartSession  # noqa: E402
from breathos.runtime.kernel import RuntimeKernel  # noqa: E402


@pytest.fixture
def kernel() -> RuntimeKernel:
    return RuntimeKernel()


@pytest.fixture
def running_kernel(kernel: RuntimeKernel) -> RuntimeKernel:
    kernel.dispatch(LoadProtocol(timestamp=0.0, protocol_id="4-7-8"))
    kernel.dispatch(StartSession(timestamp=0.0))
    return kernel
