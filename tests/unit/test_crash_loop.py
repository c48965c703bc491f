"""Tests for smartthings2mqtt._crash_loop — rolling crash window and recovery.

Test Techniques Used:
    - Boundary Value Analysis: window edge and ``max_crashes`` threshold
    - State-based Testing: persisted window survives a new manager
    - Sequence Testing: recovery clears tokens before re-authenticating
"""

from __future__ import annotations

from pathlib import Path

import pytest

from smartthings2mqtt._crash_loop import (
    CRASH_FILE_NAME,
    CrashKind,
    CrashLoopManager,
    CrashRecord,
)
from smartthings2mqtt._settings import CrashLoopSettings, TokenSettings
from smartthings2mqtt._store import JsonFileStore
from smartthings2mqtt._tokens import TOKEN_FILE_NAME, TokenGrant, TokenRecord, TokenStore
from smartthings2mqtt.testing import FakeClock


class _NoRefresh:
    async def refresh(self, refresh_token: str) -> TokenGrant:
        raise AssertionError("refresh must not be called")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(1_700_000_000.0)


@pytest.fixture
def crash_store(tmp_path: Path) -> JsonFileStore[CrashRecord]:
    return JsonFileStore(tmp_path / CRASH_FILE_NAME, CrashRecord)


@pytest.fixture
def manager(crash_store: JsonFileStore[CrashRecord], clock: FakeClock) -> CrashLoopManager:
    return CrashLoopManager(crash_store, settings=CrashLoopSettings(), clock=clock)


@pytest.fixture
def tokens(tmp_path: Path, clock: FakeClock) -> TokenStore:
    store = TokenStore(
        JsonFileStore(tmp_path / TOKEN_FILE_NAME, TokenRecord),
        _NoRefresh(),
        settings=TokenSettings(),
        clock=clock,
    )
    store.update(TokenGrant("poisoned", "poisoned-refresh", 3600))
    return store


class TestDetection:
    """Three crashes inside five minutes constitute a loop.

    Technique: Boundary Value Analysis.
    """

    def test_below_threshold(self, manager: CrashLoopManager) -> None:
        manager.record_potential_crash()
        manager.record_potential_crash()
        assert not manager.is_crash_loop_detected()

    def test_at_threshold(self, manager: CrashLoopManager, clock: FakeClock) -> None:
        for _ in range(3):
            manager.record_potential_crash(CrashKind.API_INIT_FAILURE)
            clock.advance(60)
        assert manager.is_crash_loop_detected()

    def test_old_entries_fall_out_of_window(
        self,
        manager: CrashLoopManager,
        clock: FakeClock,
    ) -> None:
        manager.record_potential_crash()
        clock.advance(301)
        manager.record_potential_crash()
        manager.record_potential_crash()

        assert not manager.is_crash_loop_detected()
        assert len(manager.entries) == 2

    def test_entry_on_window_edge_counts(
        self,
        manager: CrashLoopManager,
        clock: FakeClock,
    ) -> None:
        manager.record_potential_crash()
        clock.advance(150)
        manager.record_potential_crash()
        clock.advance(150)
        manager.record_potential_crash()

        assert manager.is_crash_loop_detected()

    def test_filter_by_kind(self, manager: CrashLoopManager) -> None:
        manager.record_potential_crash(CrashKind.AUTH_FAILURE)
        manager.record_potential_crash(CrashKind.DEVICE_HEALTH_FAILURE)
        manager.record_potential_crash(CrashKind.DEVICE_HEALTH_FAILURE)

        assert manager.is_crash_loop_detected()
        assert not manager.is_crash_loop_detected(kinds={CrashKind.DEVICE_HEALTH_FAILURE})

    def test_override_config(self, manager: CrashLoopManager) -> None:
        manager.record_potential_crash()
        assert manager.is_crash_loop_detected(CrashLoopSettings(max_crashes=1))


class TestPersistence:
    """The window survives process restarts.

    Technique: State-based Testing.
    """

    def test_new_manager_sees_previous_entries(
        self,
        manager: CrashLoopManager,
        crash_store: JsonFileStore[CrashRecord],
        clock: FakeClock,
    ) -> None:
        manager.record_potential_crash(CrashKind.AUTH_FAILURE)
        manager.record_potential_crash(CrashKind.AUTH_FAILURE)

        restarted = CrashLoopManager(crash_store, settings=CrashLoopSettings(), clock=clock)
        restarted.record_potential_crash(CrashKind.AUTH_FAILURE)

        assert restarted.is_crash_loop_detected()
        assert [e.kind for e in restarted.entries] == [CrashKind.AUTH_FAILURE] * 3

    def test_corrupt_file_starts_empty(
        self,
        crash_store: JsonFileStore[CrashRecord],
        clock: FakeClock,
    ) -> None:
        crash_store.path.write_text("[]", encoding="utf-8")

        manager = CrashLoopManager(crash_store, settings=CrashLoopSettings(), clock=clock)

        assert manager.entries == []


class TestRecovery:
    """Detection → clear tokens → reset window → start authorization.

    Technique: Sequence Testing.
    """

    def test_no_loop_no_recovery(
        self,
        manager: CrashLoopManager,
        tokens: TokenStore,
    ) -> None:
        flows: list[bool] = []

        assert manager.check_and_recover(tokens, lambda: flows.append(True)) is False
        assert tokens.get_access_token() == "poisoned"
        assert flows == []

    def test_loop_wipes_tokens_then_reauthenticates(
        self,
        manager: CrashLoopManager,
        tokens: TokenStore,
        tmp_path: Path,
    ) -> None:
        observed: list[tuple[str | None, bool]] = []

        def start_flow() -> None:
            observed.append(
                (tokens.get_access_token(), (tmp_path / TOKEN_FILE_NAME).exists()),
            )

        for _ in range(3):
            manager.record_potential_crash(CrashKind.API_INIT_FAILURE)

        assert manager.check_and_recover(tokens, start_flow) is True
        assert observed == [(None, False)]
        assert manager.entries == []

    def test_recovery_resets_persisted_window(
        self,
        manager: CrashLoopManager,
        tokens: TokenStore,
        crash_store: JsonFileStore[CrashRecord],
    ) -> None:
        for _ in range(3):
            manager.record_potential_crash()

        manager.recover(tokens, lambda: None)

        assert crash_store.load() == CrashRecord()
