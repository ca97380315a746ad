import random

from accessgate.rotation import RotationPicker

VARIANTS = ["a", "b", "c"]


def test_never_repeats_consecutively(db, make_user):
    make_user(1)
    picker = RotationPicker(db, random.Random(3))

    picks = [picker.pick(1, "start", VARIANTS) for _ in range(50)]

    assert all(p in VARIANTS for p in picks)
    assert all(a != b for a, b in zip(picks, picks[1:]))


def test_stages_rotate_independently(db, make_user):
    make_user(1)
    picker = RotationPicker(db, random.Random(5))

    picker.pick(1, "start", VARIANTS)
    last_start = db.get_rotation_index(1, "start")
    picker.pick(1, "end", VARIANTS)

    assert db.get_rotation_index(1, "start") == last_start
    assert db.get_rotation_index(1, "end") is not None


def test_last_pick_survives_new_picker(db, make_user):
    make_user(1)
    first = RotationPicker(db, random.Random(1)).pick(1, "start", ["x", "y"])
    second = RotationPicker(db, random.Random(1)).pick(1, "start", ["x", "y"])
    assert first != second


def test_single_and_empty_variants(db, make_user):
    make_user(1)
    picker = RotationPicker(db)
    assert [picker.pick(1, "end", ["only"]) for _ in range(3)] == ["only"] * 3
    assert picker.pick(1, "end", []) == ""
