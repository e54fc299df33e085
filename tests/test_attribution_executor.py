import datetime
import threading

import pytest
from peewee import OperationalError, SqliteDatabase

from database.db import db
from database.models import Client, SimCard, SimCardState, Task
from services.attribution import (
    AttributionExecutor,
    AttributionTransactionError,
    ClientAlreadyHasSimCardError,
    ClientNotFoundError,
    SimCardAlreadyAssignedError,
)

NOW = datetime.datetime(2024, 5, 1, 12, 0)


@pytest.fixture()
def executor():
    return AttributionExecutor(clock=lambda: NOW)


def _reload(client, card):
    return Client.get_by_id(client.id), SimCard.get_by_id(card.id)


def test_attribute_writes_both_sides(executor, make_client, make_card):
    client = make_client(vendor_code="V1")
    card = make_card("R1")

    result = executor.attribute(client.id, "r1")

    assert result.success
    client, card = _reload(client, card)
    assert client.sim_number == "R1"
    assert card.owner_client_id == client.id
    assert card.state == SimCardState.ASSIGNED.value
    assert card.vendor_code == "V1"
    assert card.activated_at == NOW
    assert card.assigned_at == NOW


def test_assigned_at_follows_signing_date(executor, make_client, make_card):
    client = make_client(signed_at=datetime.date(2024, 3, 15))
    card = make_card("R1")

    executor.attribute(client.id, "R1")

    _, card = _reload(client, card)
    assert card.assigned_at == datetime.datetime(2024, 3, 15)


def test_explicit_vendor_code_wins(executor, make_client, make_card):
    client = make_client(vendor_code="V1")
    card = make_card("R1")

    executor.attribute(client.id, "R1", vendor_code=" V9 ")

    _, card = _reload(client, card)
    assert card.vendor_code == "V9"


def test_rejection_leaves_data_untouched(executor, make_client, make_card):
    holder = make_client("Владелец", sim_number="R1")
    card = make_card("R1", owner_client_id=holder.id, state=SimCardState.ASSIGNED.value)
    client = make_client("Претендент")

    result = executor.attribute(client.id, "R1")

    assert not result.success
    assert isinstance(result.error, SimCardAlreadyAssignedError)
    assert result.message == str(result.error)
    client, card = _reload(client, card)
    assert client.sim_number is None
    assert card.owner_client_id == holder.id


def test_orphaned_card_is_cleared_then_attributed(executor, make_client, make_card):
    old = make_client("Старый", sim_number="R1", vendor_code="OLD")
    card = make_card(
        "R1", owner_client_id=old.id, state=SimCardState.ASSIGNED.value, vendor_code="OLD"
    )
    old.soft_delete()
    client = make_client("Новый")

    result = executor.attribute(client.id, "R1")

    assert result.success
    client, card = _reload(client, card)
    assert card.owner_client_id == client.id
    assert card.vendor_code is None
    assert client.sim_number == "R1"


def test_reattribution_keeps_dates(executor, make_client, make_card):
    first = datetime.datetime(2023, 1, 1)
    client = make_client(sim_number="R1")
    card = make_card(
        "R1",
        owner_client_id=client.id,
        state=SimCardState.ASSIGNED.value,
        assigned_at=first,
        activated_at=first,
    )

    assert executor.attribute(client.id, "R1").success

    _, card = _reload(client, card)
    assert card.assigned_at == first
    assert card.activated_at == first


def test_second_claimant_loses(executor, make_client, make_card):
    make_card("R1")
    first = make_client("Первый")
    second = make_client("Второй")

    assert executor.attribute(first.id, "R1").success
    result = executor.attribute(second.id, "R1")

    assert not result.success
    assert result.error.holder_id == first.id
    assert Client.select().where(Client.sim_number == "R1").count() == 1


def test_storage_failure_rolls_back(executor, make_client, make_card, monkeypatch):
    client = make_client()
    card = make_card("R1")

    def boom(*args, **kwargs):
        raise OperationalError("disk I/O error")

    monkeypatch.setattr(AttributionExecutor, "_write_card_assignment", staticmethod(boom))

    with pytest.raises(AttributionTransactionError):
        executor.attribute(client.id, "R1")

    client, card = _reload(client, card)
    assert client.sim_number is None
    assert card.owner_client_id is None
    assert card.state == SimCardState.AVAILABLE.value


def test_release_clears_both_sides(executor, make_client, make_card):
    client = make_client(vendor_code="V1")
    card = make_card("R1")
    executor.attribute(client.id, "R1")

    result = executor.release(client.id)

    assert result.success
    client, card = _reload(client, card)
    assert client.sim_number is None
    assert card.owner_client_id is None
    assert card.state == SimCardState.AVAILABLE.value
    assert card.vendor_code is None
    assert card.assigned_at is None
    assert card.activated_at is None


def test_release_is_idempotent(executor, make_client, make_card):
    client = make_client()
    make_card("R1")
    executor.attribute(client.id, "R1")

    assert executor.release(client.id).success
    assert executor.release(client.id).success


def test_release_does_not_touch_foreign_card(executor, make_client, make_card):
    owner = make_client("Владелец", sim_number="R1")
    card = make_card("R1", owner_client_id=owner.id, state=SimCardState.ASSIGNED.value)
    stale = make_client("Устаревший", sim_number="R1")

    assert executor.release(stale.id).success

    stale, card = _reload(stale, card)
    assert stale.sim_number is None
    assert card.owner_client_id == owner.id


def test_release_unknown_client(executor, in_memory_db):
    result = executor.release(404)

    assert not result.success
    assert isinstance(result.error, ClientNotFoundError)


def test_change_swaps_cards_in_one_step(executor, make_client, make_card):
    client = make_client(vendor_code="V1")
    make_card("R1")
    make_card("R2")
    executor.attribute(client.id, "R1")

    result = executor.change(client.id, "r2")

    assert result.success
    assert "R1" in result.message and "R2" in result.message
    assert Client.get_by_id(client.id).sim_number == "R2"
    old = SimCard.get(SimCard.number == "R1")
    new = SimCard.get(SimCard.number == "R2")
    assert old.owner_client_id is None
    assert old.state == SimCardState.AVAILABLE.value
    assert new.owner_client_id == client.id
    assert new.vendor_code == "V1"


def test_change_to_taken_card_keeps_old_one(executor, make_client, make_card):
    client = make_client("Клиент")
    other = make_client("Другой")
    make_card("R1")
    make_card("R2")
    executor.attribute(client.id, "R1")
    executor.attribute(other.id, "R2")

    result = executor.change(client.id, "R2")

    assert not result.success
    assert isinstance(result.error, SimCardAlreadyAssignedError)
    assert Client.get_by_id(client.id).sim_number == "R1"
    assert SimCard.get(SimCard.number == "R1").owner_client_id == client.id
    assert SimCard.get(SimCard.number == "R2").owner_client_id == other.id


def test_change_without_current_card_attributes(executor, make_client, make_card):
    client = make_client()
    make_card("R1")

    assert executor.change(client.id, "R1").success
    assert SimCard.get(SimCard.number == "R1").owner_client_id == client.id


def test_reassign_moves_card_between_clients(executor, make_client, make_card):
    first = make_client("Первый")
    second = make_client("Второй")
    make_card("R1")
    executor.attribute(first.id, "R1")

    result = executor.reassign("R1", second.id)

    assert result.success
    assert Client.get_by_id(first.id).sim_number is None
    assert Client.get_by_id(second.id).sim_number == "R1"
    assert SimCard.get(SimCard.number == "R1").owner_client_id == second.id


def test_reassign_to_client_with_card_is_rolled_back(executor, make_client, make_card):
    first = make_client("Первый")
    second = make_client("Второй")
    make_card("R1")
    make_card("R2")
    executor.attribute(first.id, "R1")
    executor.attribute(second.id, "R2")

    result = executor.reassign("R1", second.id)

    assert not result.success
    assert isinstance(result.error, ClientAlreadyHasSimCardError)
    assert Client.get_by_id(first.id).sim_number == "R1"
    assert SimCard.get(SimCard.number == "R1").owner_client_id == first.id


@pytest.fixture()
def file_db(tmp_path):
    previous = db.obj
    database = SqliteDatabase(str(tmp_path / "attribution.db"), pragmas={"foreign_keys": 1})
    db.initialize(database)
    database.create_tables([Client, SimCard, Task])
    try:
        yield database
    finally:
        database.close()
        db.initialize(previous)


def test_concurrent_claims_on_one_card(file_db):
    first = Client.create(name="Первый")
    second = Client.create(name="Второй")
    SimCard.create(number="R1")
    executor = AttributionExecutor()
    barrier = threading.Barrier(2)
    results = {}

    def claim(client_id):
        barrier.wait()
        try:
            results[client_id] = executor.attribute(client_id, "R1")
        finally:
            file_db.close()

    threads = [threading.Thread(target=claim, args=(c.id,)) for c in (first, second)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    winners = [client_id for client_id, result in results.items() if result.success]
    assert len(results) == 2
    assert len(winners) == 1
    (loser,) = {first.id, second.id} - set(winners)
    assert isinstance(results[loser].error, SimCardAlreadyAssignedError)
    assert results[loser].error.holder_id == winners[0]
    assert SimCard.get(SimCard.number == "R1").owner_client_id == winners[0]
    assert Client.select().where(Client.sim_number == "R1").count() == 1
