import pytest

from interpreter import BANK_COUNT, QUEUE_BANK, Storage


def fill(storage, bank, values):
    storage.select(bank)
    for value in values:
        storage.push(value)


def test_starts_on_bank_zero_with_empty_banks():
    storage = Storage()
    assert storage.current == 0
    assert len(storage.banks) == BANK_COUNT == 28
    assert storage.size() == 0
    assert storage.snapshot() == {}


def test_stack_banks_are_lifo():
    storage = Storage()
    fill(storage, 3, [1, 2, 3])
    assert storage.size() == 3
    assert storage.peek() == 3
    assert [storage.pop(), storage.pop(), storage.pop()] == [3, 2, 1]


def test_queue_bank_is_fifo():
    storage = Storage()
    fill(storage, QUEUE_BANK, [1, 2, 3])
    assert storage.peek() == 1
    assert [storage.pop(), storage.pop(), storage.pop()] == [1, 2, 3]


def test_duplicate_on_stack_repeats_top():
    storage = Storage()
    fill(storage, 0, [7, 2, 9])
    storage.duplicate()
    assert list(storage.banks[0]) == [7, 2, 9, 9]


def test_duplicate_on_queue_doubles_front():
    storage = Storage()
    fill(storage, QUEUE_BANK, [7, 2, 9])
    storage.duplicate()
    assert list(storage.banks[QUEUE_BANK]) == [7, 7, 2, 9]


def test_swap_on_stack_exchanges_top_two():
    storage = Storage()
    fill(storage, 0, [1, 2, 3])
    storage.swap()
    assert list(storage.banks[0]) == [1, 3, 2]


def test_swap_on_queue_moves_front_pair_to_back():
    storage = Storage()
    fill(storage, QUEUE_BANK, [1, 2, 3])
    storage.swap()
    assert list(storage.banks[QUEUE_BANK]) == [3, 1, 2]
    assert storage.pop() == 3
    assert storage.pop() == 1


def test_push_to_leaves_selector_alone():
    storage = Storage()
    storage.push_to(5, 42)
    assert storage.current == 0
    assert storage.size() == 0
    assert storage.snapshot() == {5: [42]}


def test_select_rejects_unknown_bank():
    storage = Storage()
    with pytest.raises(IndexError):
        storage.select(BANK_COUNT)
    assert storage.current == 0


def test_pop_on_empty_bank_raises():
    storage = Storage()
    with pytest.raises(IndexError):
        storage.pop()
