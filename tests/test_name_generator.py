import pytest

from oval_derby.horse_name_generator import NameAllocator


def test_field_of_names_is_unique():
    allocator = NameAllocator(seed=5)
    names = [allocator.generate() for _ in range(12)]
    assert len(set(names)) == 12
    assert allocator.in_use == set(names)
    assert all(len(name) <= 32 for name in names)


def test_reset_and_release_free_names():
    allocator = NameAllocator(seed=5)
    name = allocator.generate()
    allocator.release(name)
    assert name not in allocator.in_use

    allocator.generate()
    allocator.reset()
    assert allocator.in_use == set()


def test_crowded_pool_falls_back_to_numbered_names():
    allocator = NameAllocator(config={"lexicons": {"Adjective": ["Swift"], "Noun": ["Arrow"]}}, seed=1)
    assert allocator.generate() == "Swift Arrow"
    second = allocator.generate()
    assert second.startswith("Swift Arrow ")
    assert second != "Swift Arrow"


def test_reserved_names_are_skipped():
    config = {
        "lexicons": {"Adjective": ["Thunder", "Swift"], "Noun": ["Thunder"]},
        "rules": {"reserved_names": ["Thunder Thunder"]},
    }
    allocator = NameAllocator(config=config, seed=3)
    assert allocator.generate() == "Swift Thunder"


def test_lexicon_needs_both_parts():
    with pytest.raises(ValueError):
        NameAllocator(config={"lexicons": {"Adjective": ["Swift"]}})
