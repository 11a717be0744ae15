from checkout_service.staging import FileStagingStore, InMemoryStagingStore, StagingRegistry


def test_take_once_returns_what_was_put_then_nothing(pending_order):
    store = InMemoryStagingStore()

    store.put(pending_order)

    assert store.take_once() == pending_order
    assert store.take_once() is None


def test_peek_does_not_consume(pending_order):
    store = InMemoryStagingStore()
    store.put(pending_order)

    assert store.peek() == pending_order
    assert store.peek() == pending_order
    store.discard()
    assert store.peek() is None


def test_last_writer_wins(cart_items, pending_order, order_factory):
    store = InMemoryStagingStore()
    second = order_factory(cart_items, user_id="8")

    store.put(pending_order)
    store.put(second)

    assert store.take_once().user_id == "8"


def test_staged_copy_is_detached_from_caller(pending_order):
    store = InMemoryStagingStore()
    store.put(pending_order)

    pending_order.quantities["a"] = 99

    assert store.take_once().quantities == {"a": 2}


def test_file_store_round_trip(tmp_path, pending_order):
    store = FileStagingStore(str(tmp_path / "pending_order.json"))

    store.put(pending_order)
    restored = FileStagingStore(str(tmp_path / "pending_order.json")).take_once()

    assert restored == pending_order
    assert restored.idempotency_key == pending_order.idempotency_key
    assert store.take_once() is None
    assert not (tmp_path / "pending_order.json").exists()


def test_file_store_discard_without_file(tmp_path):
    store = FileStagingStore(str(tmp_path / "missing.json"))

    store.discard()

    assert store.peek() is None


def test_registry_keeps_one_slot_per_session(pending_order):
    registry = StagingRegistry()

    registry.for_session("tab-1").put(pending_order)

    assert registry.for_session("tab-2").peek() is None
    assert registry.for_session("tab-1").peek() == pending_order


def test_registry_pop_does_not_create_slots():
    registry = StagingRegistry()

    assert registry.pop("unknown") is None
    assert len(registry) == 0


def test_registry_prune_keeps_only_staged_slots(pending_order):
    registry = StagingRegistry()
    registry.for_session("empty")
    registry.for_session("staged").put(pending_order)

    registry.prune("empty")
    registry.prune("staged")

    assert len(registry) == 1
    assert registry.pop("staged").take_once() == pending_order
    assert len(registry) == 0
