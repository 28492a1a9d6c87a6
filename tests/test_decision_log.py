"""Tests for :mod:`decision_journal.journal.decision_log`."""

from __future__ import annotations

import pytest
from sqlalchemy import update

from decision_journal.database.models import AccountSnapshot, DecisionCycle, ExecutionResult
from decision_journal.errors import CorruptRecord, DuplicateCycle
from decision_journal.journal import DecisionLogStore

from conftest import write_legacy_log


@pytest.fixture
def store(database) -> DecisionLogStore:
    return DecisionLogStore(database, 'deepseek_trader')


def test_append_then_lookup_by_cycle(store, make_record) -> None:
    store.append(make_record(1))
    store.append(make_record(2, equity=1_010.0))

    record = store.get_by_cycle(2)

    assert record is not None
    assert record.cycle_number == 2
    assert record.account_snapshot.total_equity == pytest.approx(1_010.0)
    assert store.get_by_cycle(3) is None


def test_lookup_returns_identical_record_every_time(store, make_record) -> None:
    store.append(make_record(1))
    first = store.get_by_cycle(1)
    store.append(make_record(2))
    store.append(make_record(3))

    assert store.get_by_cycle(1) == first
    assert store.get_by_cycle(1) == first


def test_duplicate_cycle_is_rejected(store, make_record) -> None:
    store.append(make_record(1, equity=1_000.0))

    with pytest.raises(DuplicateCycle):
        store.append(make_record(1, equity=2_000.0))

    assert store.get_by_cycle(1).account_snapshot.total_equity == pytest.approx(1_000.0)
    assert store.count() == 1


def test_out_of_order_cycle_is_rejected(store, make_record) -> None:
    store.append(make_record(5))

    with pytest.raises(DuplicateCycle) as excinfo:
        store.append(make_record(4))

    assert excinfo.value.latest == 5


def test_cycle_numbers_are_scoped_per_trader(database, make_record) -> None:
    first = DecisionLogStore(database, 'deepseek_trader')
    second = DecisionLogStore(database, 'qwen_trader')

    first.append(make_record(1))
    second.append(make_record(1, trader_id='qwen_trader'))

    assert first.count() == 1
    assert second.count() == 1


def test_record_for_other_trader_is_refused(store, make_record) -> None:
    with pytest.raises(ValueError):
        store.append(make_record(1, trader_id='qwen_trader'))


def test_get_recent_is_newest_first_and_bounded(store, make_record) -> None:
    for cycle in range(1, 8):
        store.append(make_record(cycle))

    recent = store.get_recent(3)

    assert [record.cycle_number for record in recent] == [7, 6, 5]
    assert store.get_recent(3) == recent
    assert store.get_recent(0) == []
    assert len(store.get_recent(100)) == 7


def test_list_all_is_ascending_across_batches(store, make_record) -> None:
    for cycle in range(1, 12):
        store.append(make_record(cycle))

    cycles = [record.cycle_number for record in store.list_all(batch_size=4)]

    assert cycles == list(range(1, 12))
    assert [record.cycle_number for record in store.list_since(8, batch_size=2)] == [9, 10, 11]


def test_corrupt_rows_are_skipped_by_batch_reads(store, make_record, database) -> None:
    for cycle in range(1, 4):
        store.append(make_record(cycle))
    with database.session() as session:
        session.execute(
            update(DecisionCycle)
            .where(DecisionCycle.cycle_number == 2)
            .values(payload='{"cycle_number": ')
        )

    assert [record.cycle_number for record in store.list_all()] == [1, 3]
    assert [record.cycle_number for record in store.get_recent(10)] == [3, 1]
    with pytest.raises(CorruptRecord):
        store.get_by_cycle(2)


def test_record_cycle_assigns_next_cycle_and_success(store) -> None:
    assert store.next_cycle_number() == 1

    first = store.record_cycle(
        account=AccountSnapshot(total_equity=1_000.0),
        positions=[],
        decisions=[],
        execution_results=[],
    )
    second = store.record_cycle(
        account=AccountSnapshot(total_equity=990.0),
        positions=[],
        decisions=[],
        execution_results=[
            ExecutionResult(symbol='BTCUSDT', action='open_long', success=True),
            ExecutionResult(symbol='ETHUSDT', action='open_short', success=False, error='margin'),
        ],
        error_message='partial failure',
    )

    assert (first.cycle_number, first.success) == (1, True)
    assert (second.cycle_number, second.success) == (2, False)
    assert store.get_by_cycle(2).error_message == 'partial failure'
    assert store.latest_cycle_number() == 2


def test_legacy_files_are_imported_in_cycle_order(store, make_record, tmp_path) -> None:
    log_dir = tmp_path / 'decision_logs' / 'deepseek_trader'
    for cycle in (2, 10, 1):
        write_legacy_log(log_dir, make_record(cycle))
    write_legacy_log(log_dir, make_record(11, success=False), with_success=True)
    (log_dir / 'decision_2025-10-28_12-00-00-000_cycle12.json').write_text('{"cycle_number": ')
    (log_dir / 'notes.json').write_text('{}')

    imported, skipped = store.import_legacy_logs(log_dir)

    assert (imported, skipped) == (4, 1)
    assert [record.cycle_number for record in store.list_all()] == [1, 2, 10, 11]
    assert [record.success for record in store.list_all()] == [True, True, True, False]
    assert store.get_by_cycle(10).performance == {'runtime_minutes': 30, 'total_cycles': 10}


def test_reimporting_legacy_files_skips_recorded_cycles(store, make_record, tmp_path) -> None:
    log_dir = tmp_path / 'deepseek_trader'
    for cycle in (1, 2):
        write_legacy_log(log_dir, make_record(cycle))
    store.import_legacy_logs(log_dir)

    assert store.import_legacy_logs(log_dir) == (0, 2)
    assert store.count() == 2
    assert store.import_legacy_logs(tmp_path / 'missing') == (0, 0)
