import datetime

import pytest

from database.models import Client, SimCard, SimCardState
from services.attribution import AttributionExecutor
from services.consistency import ConsistencyAuditor, ReconciliationEngine

NOW = datetime.datetime(2024, 6, 1, 9, 30)
ASSIGNED = SimCardState.ASSIGNED.value
AVAILABLE = SimCardState.AVAILABLE.value


@pytest.fixture()
def engine():
    return ReconciliationEngine(ConsistencyAuditor(), clock=lambda: NOW)


def _card(number):
    return SimCard.get(SimCard.number == number)


def _client(client_id):
    return Client.get_by_id(client_id)


def _assert_bidirectional():
    """Каждая занятая карта и каждый клиент с номером ссылаются друг на друга."""
    for card in SimCard.select().where(SimCard.owner_client_id.is_null(False)):
        owner = Client.active().where(Client.id == card.owner_client_id).get()
        assert owner.sim_number == card.number
        assert card.state == ASSIGNED
    for client in Client.active().where(Client.sim_number.is_null(False)):
        assert _card(client.sim_number).owner_client_id == client.id


def test_orphan_of_deleted_client_is_released(engine, make_client, make_card):
    client = make_client(sim_number="R1", vendor_code="V1")
    make_card("R1", owner_client_id=client.id, state=ASSIGNED, vendor_code="V1")
    client.soft_delete()

    report = engine.reconcile()

    card = _card("R1")
    assert card.owner_client_id is None
    assert card.state == AVAILABLE
    assert card.vendor_code is None
    assert report.orphans_released == 1
    assert report.residual.is_consistent


def test_client_side_reference_is_completed(engine, make_client, make_card):
    client = make_client(sim_number="R1", vendor_code="V1", signed_at=datetime.date(2024, 2, 1))
    make_card("R1")

    report = engine.reconcile()

    card = _card("R1")
    assert card.owner_client_id == client.id
    assert card.state == ASSIGNED
    assert card.assigned_at == datetime.datetime(2024, 2, 1)
    assert card.activated_at == NOW
    assert card.vendor_code == "V1"
    assert report.client_links_synced == 1
    assert report.vendor_codes_synced == 1


def test_card_side_reference_is_completed(engine, make_client, make_card):
    client = make_client()
    make_card("R1", owner_client_id=client.id, state=ASSIGNED, vendor_code="V7")

    report = engine.reconcile()

    client = _client(client.id)
    assert client.sim_number == "R1"
    assert client.vendor_code == "V7"
    assert report.card_links_synced >= 1
    assert report.residual.is_consistent


def test_card_of_client_with_other_number_is_released(engine, make_client, make_card):
    client = make_client(sim_number="R2")
    make_card("R1", owner_client_id=client.id, state=ASSIGNED)
    make_card("R2")

    engine.reconcile()

    assert _card("R1").owner_client_id is None
    assert _card("R2").owner_client_id == client.id
    _assert_bidirectional()


def test_reference_to_missing_card_is_cleared(engine, make_client):
    client = make_client(sim_number="GHOST")

    report = engine.reconcile()

    assert _client(client.id).sim_number is None
    assert report.residual.is_consistent


def test_duplicate_holders_current_owner_wins(engine, make_client, make_card):
    first = make_client("Первый", sim_number="R1")
    second = make_client("Второй", sim_number="R1")
    make_card("R1", owner_client_id=second.id, state=ASSIGNED)

    engine.reconcile()

    assert _client(second.id).sim_number == "R1"
    assert _client(first.id).sim_number is None
    assert _card("R1").owner_client_id == second.id


def test_duplicate_holders_lowest_id_wins_for_free_card(engine, make_client, make_card):
    first = make_client("Первый", sim_number="R1")
    second = make_client("Второй", sim_number="R1")
    make_card("R1")

    engine.reconcile()

    assert _card("R1").owner_client_id == first.id
    assert _client(second.id).sim_number is None
    _assert_bidirectional()


def test_vendor_code_follows_client(engine, make_client, make_card):
    client = make_client(sim_number="R1", vendor_code="NEW")
    make_card("R1", owner_client_id=client.id, state=ASSIGNED, vendor_code="OLD",
              assigned_at=NOW, activated_at=NOW)

    report = engine.reconcile()

    assert _card("R1").vendor_code == "NEW"
    assert report.vendor_codes_synced == 1
    assert report.total_corrections == 1


def test_second_run_changes_nothing(engine, make_client, make_card):
    a = make_client("А", sim_number="R1", vendor_code="V1")
    make_client("Б", sim_number="R1")
    b = make_client("В")
    gone = make_client("Г", sim_number="R3")
    make_card("R1")
    make_card("R2", owner_client_id=b.id, state=ASSIGNED)
    make_card("R3", owner_client_id=gone.id, state=ASSIGNED)
    make_card("R4", state=ASSIGNED)
    gone.soft_delete()

    first = engine.reconcile()
    second = engine.reconcile()

    assert first.total_corrections > 0
    assert second.total_corrections == 0
    assert second.residual.is_consistent
    assert _card("R1").owner_client_id == a.id
    _assert_bidirectional()


def test_card_returns_to_stock_after_holder_is_deleted(engine, make_client, make_card):
    executor = AttributionExecutor(clock=lambda: NOW)
    holder = make_client("Старый", id=42)
    make_client("Новый", id=7)
    make_card("R1")

    assert executor.attribute(42, "R1").success
    rejected = executor.attribute(7, "R1")
    assert not rejected.success
    assert rejected.error.holder_id == 42
    assert "id=42" in rejected.message

    holder.soft_delete()
    engine.reconcile()

    card = _card("R1")
    assert card.owner_client_id is None
    assert card.state == AVAILABLE

    assert executor.attribute(7, "R1").success
    assert _card("R1").owner_client_id == 7
    assert _client(7).sim_number == "R1"
    assert engine.reconcile().total_corrections == 0


def test_reconcile_one_links_single_client(engine, make_client, make_card):
    client = make_client(sim_number="R1", vendor_code="V1")
    other = make_client("Другой", sim_number="R2")
    make_card("R1")
    make_card("R2")

    corrections = engine.reconcile_one(client.id)

    assert corrections == 2
    assert _card("R1").owner_client_id == client.id
    assert _card("R1").vendor_code == "V1"
    # остальные клиенты не трогаются
    assert _card("R2").owner_client_id is None
    assert _client(other.id).sim_number == "R2"
    assert engine.reconcile_one(client.id) == 0


def test_reconcile_one_releases_cards_of_deleted_client(engine, make_client, make_card):
    client = make_client(sim_number="R1")
    make_card("R1", owner_client_id=client.id, state=ASSIGNED)
    client.soft_delete()

    assert engine.reconcile_one(client.id) == 1
    assert _card("R1").owner_client_id is None


def test_reconcile_one_leaves_contested_card(engine, make_client, make_card):
    holder = make_client("Владелец", sim_number="R1")
    make_card("R1", owner_client_id=holder.id, state=ASSIGNED, assigned_at=NOW, activated_at=NOW)
    stale = make_client("Устаревший", sim_number="R1")

    assert engine.reconcile_one(stale.id) == 0
    assert _card("R1").owner_client_id == holder.id


def test_reconcile_one_clears_dangling_reference(engine, make_client):
    client = make_client(sim_number="GHOST")

    assert engine.reconcile_one(client.id) == 1
    assert _client(client.id).sim_number is None
