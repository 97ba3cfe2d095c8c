#!/usr/bin/env python3
"""
Test script for section name aliases and mixed document splitting
"""
from tenantbot.rag.sections import (
    canonical_section_name,
    normalize_text,
    section_for_title,
    split_mixed_to_sections,
)


def test_normalize_text():
    assert normalize_text(None) == ""
    assert normalize_text("  a\r\nb\rc  ") == "a\nb\nc"
    assert normalize_text("a\n\n\n\n\nb") == "a\n\nb"
    assert normalize_text("bad\x00\x07 char\ttab") == "bad char\ttab"
    # Accents and other scripts survive
    assert normalize_text("Menú del día مرحبا") == "Menú del día مرحبا"


def test_canonical_section_name():
    assert canonical_section_name("FAQ") == "faqs"
    assert canonical_section_name("qna") == "faqs"
    assert canonical_section_name("properties") == "listings"
    assert canonical_section_name("installments") == "paymentPlans"
    assert canonical_section_name("paymentPlans") == "paymentPlans"
    assert canonical_section_name("Rules") == "policies"
    assert canonical_section_name("whatsapp") == "contact"
    assert canonical_section_name("menu") == "menu"
    assert canonical_section_name("mixed") == "mixed"
    assert canonical_section_name("") == "mixed"
    assert canonical_section_name("parking") == "other"


def test_section_for_title():
    assert section_for_title("Working Hours") == "hours"
    assert section_for_title("hours") == "hours"
    assert section_for_title("Our FAQ") == "faqs"
    assert section_for_title("Payment Plans") == "paymentPlans"
    assert section_for_title("Business Name") == "profile"
    assert section_for_title("Random notes") == "other"


def test_split_mixed_to_sections():
    text = (
        "ignored preamble\n"
        "## Business Name\nCasa Pizza\n\n"
        "## Working Hours\nDaily 12-23\n\n"
        "## FAQs\nQ: Delivery?\nA: Yes\n\n"
        "## Policies\nNo pets\n"
        "## Empty\n"
    )
    sections = split_mixed_to_sections(text)
    assert sections == {
        "profile": "Casa Pizza",
        "hours": "Daily 12-23",
        "faqs": "Q: Delivery?\nA: Yes",
        "policies": "No pets",
    }


def test_split_mixed_without_headings():
    assert split_mixed_to_sections("just some text") == {"other": "just some text"}
    assert split_mixed_to_sections("   ") == {}


if __name__ == "__main__":
    test_normalize_text()
    test_canonical_section_name()
    test_section_for_title()
    test_split_mixed_to_sections()
    test_split_mixed_without_headings()
    print("✅ ALL SECTION TESTS PASSED!")
