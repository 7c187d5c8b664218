#! /usr/bin/python3
import importlib
import pytest
from typing import Any

from helpers import Peer


def pytest_addoption(parser: Any) -> None:
    parser.addoption("--node", action="store", help="node to use", default="balancedopen.DummyNode")


@pytest.fixture()  # type: ignore
def node(pytestconfig: Any) -> Any:
    parts = pytestconfig.getoption("node").rpartition('.')
    return importlib.import_module(parts[0]).__dict__[parts[2]]()


@pytest.fixture()
def peer() -> Peer:
    return Peer()
