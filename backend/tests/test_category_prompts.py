from __future__ import annotations

import pytest

from app.services.category_prompts import MediaCategory, build_tagging_prompt, resolve_category


@pytest.mark.parametrize(
    "name,expected",
    [
        ("Hair", MediaCategory.HAIR),
        ("Hair Styling", MediaCategory.HAIR),
        ("Barbershop", MediaCategory.BARBER),
        ("Nail Care", MediaCategory.NAILS),
        ("Make-Up", MediaCategory.MAKEUP),
        ("Lashes & Brows", MediaCategory.LASHES_BROWS),
        ("  Skin Care ", MediaCategory.SKINCARE),
    ],
)
def test_known_categories_resolve(name, expected):
    assert resolve_category(name) == expected


@pytest.mark.parametrize("name", [None, "", "Tattoo", "Haircare and Nails", "nails-hair"])
def test_unknown_or_ambiguous_fall_back_to_general(name):
    """Names mentioning two categories are not guessed at."""
    assert resolve_category(name) == MediaCategory.GENERAL


@pytest.mark.parametrize("category", list(MediaCategory))
def test_every_category_has_a_prompt(category):
    prompt = build_tagging_prompt(category)
    assert category.value.replace("_", " ") in prompt
    assert '"tags"' in prompt
    assert '"colors"' in prompt
