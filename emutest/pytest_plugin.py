"""pytest integration: an `emu_session` fixture backed by a real emulator.

Enable with the installed entry point (pytest11) and point it at firmware:

    pytest --emu-elf bin/app.elf [--emu-logging] [--emu-config start.yml]

Tests that use `emu_session` are skipped when no ELF is configured, so a
suite can mix emulator and pure unit tests.
"""

from __future__ import annotations

import os

import pytest

from emutest.lib.config import StartOptions, connection_from_env, load_options, options_from_env
from emutest.lib.session import Session


def pytest_addoption(parser):
    group = parser.getgroup("emutest", "emulator snapshot testing")
    group.addoption(
        "--emu-elf",
        default=os.environ.get("EMUTEST_ELF"),
        help="Firmware ELF run by the emu_session fixture (env: EMUTEST_ELF)",
    )
    group.addoption(
        "--emu-logging",
        action="store_true",
        default=False,
        help="Log session progress at INFO level",
    )
    group.addoption(
        "--emu-config",
        default=None,
        help="YAML file with session start options",
    )


def pytest_configure(config):
    config.addinivalue_line("markers", "emulator: test drives a running emulator session")


@pytest.hookimpl(tryfirst=True)
def pytest_collection_modifyitems(config, items):
    """Tag every test using emu_session with the emulator marker."""
    for item in items:
        if "emu_session" in getattr(item, "fixturenames", ()):
            item.add_marker(pytest.mark.emulator)


@pytest.fixture()
def emu_options(pytestconfig) -> StartOptions:
    """StartOptions from --emu-config, EMUTEST_* and --emu-logging."""
    path = pytestconfig.getoption("--emu-config")
    options = options_from_env(load_options(path) if path else StartOptions())
    if pytestconfig.getoption("--emu-logging"):
        options = options.merged(logging=True)
    return options


@pytest.fixture()
def emu_session(pytestconfig, emu_options):
    """A started Session, closed after the test."""
    elf = pytestconfig.getoption("--emu-elf")
    if not elf:
        pytest.skip("no firmware configured (--emu-elf or EMUTEST_ELF)")
    session = Session(elf, **connection_from_env())
    session.start(emu_options)
    try:
        yield session
    finally:
        session.close()
