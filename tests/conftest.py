"""Shared fixtures for sft_think tests."""

from __future__ import annotations

import pytest

import sft_think


@pytest.fixture(autouse=True)
def _tsv_log(tmp_path, monkeypatch):
    """Keep the TSV log out of the scripts directory."""
    log = tmp_path / "sft_think_log.tsv"
    monkeypatch.setattr(sft_think, "_LOG", log)
    return log


@pytest.fixture
def ledger() -> sft_think.ThoughtLedger:
    return sft_think.ThoughtLedger()
