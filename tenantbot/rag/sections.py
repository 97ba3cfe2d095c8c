"""
Section naming and raw text cleanup for client-supplied knowledge.

Clients send knowledge under loose names ("faq", "properties", "installments")
or as one mixed document with "## Heading" lines. This module maps both onto
the canonical Section names before chunking.
"""

import logging
import re
from typing import Dict, List

from tenantbot.models.knowledge import Section

logger = logging.getLogger(__name__)

MIXED = "mixed"

_SECTION_ALIASES = {
    Section.MENU.value: ["menu", "menus", "food", "dishes"],
    Section.FAQS.value: ["faq", "faqs", "qna"],
    Section.HOURS.value: ["hour", "hours", "workinghours", "opening hours"],
    Section.OFFERS.value: ["service", "services", "offers", "offer", "pricing"],
    Section.LISTINGS.value: ["listing", "listings", "properties", "units", "inventory"],
    Section.PAYMENT_PLANS.value: ["payment", "paymentplans", "plans", "installments"],
    Section.POLICIES.value: ["policy", "policies", "rules"],
    Section.CONTACT.value: ["contact", "phone", "whatsapp", "address"],
    Section.PROFILE.value: ["profile", "about"],
    Section.OTHER.value: ["other"],
}

_ALIAS_TO_SECTION = {
    alias: section for section, aliases in _SECTION_ALIASES.items() for alias in aliases
}

# Keyword checks for "## Heading" titles inside a mixed document, checked in order
_TITLE_KEYWORDS = [
    (("faq",), Section.FAQS.value),
    (("working hours", "opening hours", "open"), Section.HOURS.value),
    (("menu",), Section.MENU.value),
    (("services", "offers", "pricing"), Section.OFFERS.value),
    (("listing", "properties", "inventory", "units"), Section.LISTINGS.value),
    (("payment", "installment", "plan"), Section.PAYMENT_PLANS.value),
    (("policy", "policies", "rules"), Section.POLICIES.value),
    (("phone", "whatsapp", "contact", "address"), Section.CONTACT.value),
    (("business name", "business type", "city", "about"), Section.PROFILE.value),
]

_HEADING_RE = re.compile(r"^##\s+(.*)$")
# Control characters except tab and newline
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b-\x1f\x7f]")


def normalize_text(text) -> str:
    """Normalize line endings, drop control characters and collapse runs of blank lines."""
    t = str(text or "")
    t = t.replace("\r\n", "\n").replace("\r", "\n")
    t = _CONTROL_RE.sub("", t)
    t = re.sub(r"\n{3,}", "\n\n", t)
    return t.strip()


def canonical_section_name(name) -> str:
    """Map a loose section name onto a Section value.

    Returns "mixed" for mixed documents and "other" for anything unrecognized.
    """
    key = str(name or "").strip()
    if not key:
        return MIXED
    lowered = key.lower()
    if lowered == MIXED:
        return MIXED
    return _ALIAS_TO_SECTION.get(lowered, Section.OTHER.value)


def section_for_title(title: str) -> str:
    """Pick the Section for a '## Heading' title in a mixed document."""
    t = str(title or "").lower().strip()
    if t == "hours":
        return Section.HOURS.value
    for keywords, section in _TITLE_KEYWORDS:
        if any(k in t for k in keywords):
            return section
    return Section.OTHER.value


def split_mixed_to_sections(mixed_text) -> Dict[str, str]:
    """Split a mixed document on '## Heading' lines into section texts.

    Text before the first heading is dropped. A document without headings
    becomes a single 'other' section.
    """
    text = normalize_text(mixed_text)
    if not text:
        return {}

    parts: Dict[str, List[str]] = {}
    current = None
    saw_heading = False

    for line in text.split("\n"):
        m = _HEADING_RE.match(line)
        if m:
            saw_heading = True
            current = section_for_title(m.group(1))
            parts.setdefault(current, [])
            continue
        if current:
            parts[current].append(line)

    if not saw_heading:
        return {Section.OTHER.value: text}

    result = {}
    for section, lines in parts.items():
        body = normalize_text("\n".join(lines))
        if body:
            result[section] = body
    logger.debug(f"[SECTIONS] Split mixed document into: {list(result)}")
    return result
