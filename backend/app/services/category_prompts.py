"""Category-specific instructions for the vision tagging call.

Free-text category names from the catalogue are resolved to a MediaCategory
by exact slug match against a fixed alias table. Anything that does not match
falls back to GENERAL; there is no substring matching, so a name that mentions
two categories (e.g. "haircare-and-nails") never picks one arbitrarily.
"""

from __future__ import annotations

import re
from enum import Enum


class MediaCategory(str, Enum):
    HAIR = "hair"
    BARBER = "barber"
    NAILS = "nails"
    MAKEUP = "makeup"
    LASHES_BROWS = "lashes_brows"
    SKINCARE = "skincare"
    GENERAL = "general"


_ALIASES: dict[str, MediaCategory] = {
    "hair": MediaCategory.HAIR,
    "haircare": MediaCategory.HAIR,
    "hair-styling": MediaCategory.HAIR,
    "hairstyling": MediaCategory.HAIR,
    "braids": MediaCategory.HAIR,
    "braiding": MediaCategory.HAIR,
    "locs": MediaCategory.HAIR,
    "barber": MediaCategory.BARBER,
    "barbering": MediaCategory.BARBER,
    "barbershop": MediaCategory.BARBER,
    "mens-grooming": MediaCategory.BARBER,
    "nails": MediaCategory.NAILS,
    "nail-care": MediaCategory.NAILS,
    "manicure": MediaCategory.NAILS,
    "pedicure": MediaCategory.NAILS,
    "makeup": MediaCategory.MAKEUP,
    "make-up": MediaCategory.MAKEUP,
    "makeup-artistry": MediaCategory.MAKEUP,
    "lashes": MediaCategory.LASHES_BROWS,
    "brows": MediaCategory.LASHES_BROWS,
    "lashes-brows": MediaCategory.LASHES_BROWS,
    "lashes-and-brows": MediaCategory.LASHES_BROWS,
    "skincare": MediaCategory.SKINCARE,
    "skin-care": MediaCategory.SKINCARE,
    "facials": MediaCategory.SKINCARE,
    "esthetics": MediaCategory.SKINCARE,
}

_FOCUS: dict[MediaCategory, str] = {
    MediaCategory.HAIR: (
        "- Hair texture (curly, coily, wavy, straight, textured, smooth)\n"
        "- Cut/style (bob, pixie, layers, braids, locs, afro, updo, ponytail)\n"
        "- Length (short, medium, long, shoulder-length)\n"
        "- Color work (balayage, ombre, highlights, blonde, warm-tones, cool-tones)\n"
        "- Service type (haircut, color-treatment, styling, braiding)"
    ),
    MediaCategory.BARBER: (
        "- Cut (fade, taper, undercut, buzz-cut, crew-cut, line-up)\n"
        "- Fade height (low-fade, mid-fade, high-fade, skin-fade)\n"
        "- Beard work (beard-trim, shape-up, clean-shave)\n"
        "- Styling (slicked-back, textured-top, waves, designs)"
    ),
    MediaCategory.NAILS: (
        "- Nail shape (almond, coffin, square, stiletto, oval)\n"
        "- Length (short, medium, long)\n"
        "- Technique (gel, acrylic, dip-powder, press-on, nail-art)\n"
        "- Finish and design (french-tip, chrome, matte, glitter, ombre)\n"
        "- Colors (nude, red, pastel, dark, neon)"
    ),
    MediaCategory.MAKEUP: (
        "- Look (natural, glam, bridal, editorial, soft-glam)\n"
        "- Eyes (smokey-eye, cut-crease, winged-liner, shimmer)\n"
        "- Base and lips (dewy, matte, contour, bold-lip, nude-lip)\n"
        "- Occasion (wedding, party, photoshoot, everyday)"
    ),
    MediaCategory.LASHES_BROWS: (
        "- Lash style (classic, hybrid, volume, mega-volume, wispy, cat-eye)\n"
        "- Brow treatment (lamination, microblading, tint, threading, wax)\n"
        "- Effect (natural, dramatic, fluffy, defined)"
    ),
    MediaCategory.SKINCARE: (
        "- Treatment (facial, peel, microdermabrasion, hydrafacial, extraction)\n"
        "- Concern (acne, hydration, anti-aging, brightening, texture)\n"
        "- Result (glowing, clear, even-tone, radiant)"
    ),
    MediaCategory.GENERAL: (
        "- The service being shown and its result\n"
        "- Style, technique and finish\n"
        "- Colors and overall aesthetic"
    ),
}


def _slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", name.strip().lower())
    return slug.strip("-")


def resolve_category(name: str | None) -> MediaCategory:
    """Map a catalogue category name onto a known MediaCategory."""
    if not name:
        return MediaCategory.GENERAL
    return _ALIASES.get(_slugify(name), MediaCategory.GENERAL)


def build_tagging_prompt(category: MediaCategory) -> str:
    """Instruction sent alongside the image in the tagging call."""
    return (
        f"Analyze this {category.value.replace('_', ' ')} service image in detail.\n\n"
        "Generate 15-20 specific searchable keywords that describe:\n"
        f"{_FOCUS[category]}\n\n"
        "Also list up to 5 dominant colors as hex codes.\n\n"
        "Format your response EXACTLY as JSON:\n"
        '{"tags": ["keyword", "..."], "colors": ["#aabbcc", "..."]}\n\n'
        "Use lowercase hyphenated keywords clients would search for. "
        "Respond ONLY with valid JSON, no other text."
    )
