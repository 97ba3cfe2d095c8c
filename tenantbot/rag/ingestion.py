"""
Ingestion pipeline: raw client sections -> chunks -> knowledge store.

Every save overwrites the raw dataset of the (client_id, bot_type) and
replaces its whole chunk set, then reports which sections made it in and
records that report next to the raw dataset.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional

from tenantbot.models.knowledge import DEFAULT_BOT_TYPE, Section
from tenantbot.rag.chunker import chunk_sections, count_by_section
from tenantbot.rag.errors import ValidationError
from tenantbot.rag.prompt_builder import sections_for_bot_type
from tenantbot.rag.sections import MIXED, canonical_section_name, normalize_text, split_mixed_to_sections

logger = logging.getLogger(__name__)

STATUS_EMPTY = "empty"
STATUS_READY = "ready"
STATUS_NEEDS_REVIEW = "needs_review"

# Sections whose absence gets its own warning when the bot variant expects them
_SECTION_WARNINGS = {
    Section.LISTINGS.value: "No listings detected.",
    Section.PAYMENT_PLANS.value: "No payment plans detected.",
    Section.FAQS.value: "No FAQs detected.",
}


def _merge(out: Dict[str, str], section: str, text: str) -> None:
    if not text:
        return
    if section in out:
        out[section] = f"{out[section]}\n\n{text}"
    else:
        out[section] = text


def prepare_sections(raw_sections: Mapping[str, Any]) -> Dict[str, str]:
    """Canonicalize section names and clean up their text.

    A 'mixed' entry is split on its '## Heading' lines. Entries that land on
    the same section are joined with a blank line, in input order.
    """
    out: Dict[str, str] = {}
    for key, text in raw_sections.items():
        name = canonical_section_name(key)
        if name == MIXED:
            for section, part in split_mixed_to_sections(text).items():
                _merge(out, section, part)
        else:
            _merge(out, name, normalize_text(text))
    return out


def coverage_report(bot_type: str, chunk_counts: Dict[str, int]) -> Dict[str, Any]:
    """Compare the sections that produced chunks with those the bot variant renders."""
    present = [s for s, n in chunk_counts.items() if n > 0]
    expected = [s for s in sections_for_bot_type(bot_type) if s != Section.OTHER.value]
    missing = [s for s in expected if s not in present]

    warnings: List[str] = []
    if missing:
        warnings.append(f"Missing sections: {', '.join(missing)}")
    for section, message in _SECTION_WARNINGS.items():
        if section in missing:
            warnings.append(message)

    if not present:
        status = STATUS_EMPTY
    elif warnings:
        status = STATUS_NEEDS_REVIEW
    else:
        status = STATUS_READY

    return {
        "sections_present": present,
        "missing_sections": missing,
        "coverage_warnings": warnings,
        "knowledge_status": status,
    }


def _validate(client_id, bot_type, raw_sections):
    client_id = str(client_id or "").strip()
    if not client_id:
        raise ValidationError("client_id is required")
    if not isinstance(raw_sections, Mapping) or not raw_sections:
        raise ValidationError("raw_sections must contain at least one section")
    sections = prepare_sections(raw_sections)
    if not sections:
        raise ValidationError("No content to save: every section is blank")
    bot_type = str(bot_type or "").strip() or DEFAULT_BOT_TYPE
    return client_id, bot_type, sections


def _build(store, datasets, client_id: str, bot_type: str, sections: Dict[str, str]) -> Dict[str, Any]:
    pairs = chunk_sections(sections)
    inserted, generation = store.replace_chunks_versioned(client_id, bot_type, pairs)

    report = coverage_report(bot_type, count_by_section(pairs))
    if datasets is not None:
        datasets.save_status(client_id, bot_type, report)

    result = {
        "client_id": client_id,
        "bot_type": bot_type,
        "chunks_inserted": inserted,
        "version": generation,
        **report,
    }
    logger.info(
        f"[INGEST] {client_id}/{bot_type}: {inserted} chunks, generation {generation}, "
        f"status={report['knowledge_status']}, sections={report['sections_present']}"
    )
    for warning in report["coverage_warnings"]:
        logger.warning(f"[INGEST] {client_id}/{bot_type}: {warning}")
    return result


def ingest(
    store,
    datasets,
    client_id: str,
    bot_type: Optional[str],
    raw_sections: Mapping[str, Any],
) -> Dict[str, Any]:
    """Save a tenant's raw sections and rebuild its chunks from them.

    Args:
        store: KnowledgeStore receiving the chunks.
        datasets: DatasetStore keeping the raw sections and the coverage
                  report, or None to skip saving both.
        client_id: Tenant key.
        bot_type: Bot variant; empty means 'default'.
        raw_sections: Section name -> raw text. Loose names ('faq',
                      'properties') and a '## Heading' 'mixed' document are accepted.

    Returns:
        Dict with keys: client_id, bot_type, chunks_inserted, version,
        sections_present, missing_sections, coverage_warnings, knowledge_status.

    Raises:
        ValidationError: Missing client_id, no sections, or only blank
                         sections. Raised before any write.
        StorageUnavailable: If the store cannot be written.
    """
    client_id, bot_type, sections = _validate(client_id, bot_type, raw_sections)

    if datasets is not None:
        datasets.save_dataset(client_id, bot_type, {str(k): str(v or "") for k, v in raw_sections.items()})

    return _build(store, datasets, client_id, bot_type, sections)


def rebuild(store, datasets, client_id: str, bot_type: Optional[str] = None) -> Dict[str, Any]:
    """Re-chunk a tenant from its stored raw dataset.

    Raises:
        ValidationError: Missing client_id or no dataset stored for the tenant.
    """
    client_id = str(client_id or "").strip()
    if not client_id:
        raise ValidationError("client_id is required")
    bot_type = str(bot_type or "").strip() or DEFAULT_BOT_TYPE

    dataset = datasets.get_dataset(client_id, bot_type)
    if dataset is None:
        raise ValidationError(f"No dataset stored for {client_id}/{bot_type}")

    logger.info(f"[INGEST] Rebuilding {client_id}/{bot_type} from dataset saved {dataset.updated_at.isoformat()}")
    client_id, bot_type, sections = _validate(client_id, bot_type, dataset.raw_sections)
    return _build(store, datasets, client_id, bot_type, sections)


def get_status(store, datasets, client_id: str, bot_type: Optional[str] = None) -> Dict[str, Any]:
    """Knowledge status of a tenant without rebuilding anything.

    Reads the coverage report recorded by the last build. When none was
    recorded, the status falls back to 'ready' or 'empty' from the chunk count.
    """
    client_id = str(client_id or "").strip()
    if not client_id:
        raise ValidationError("client_id is required")
    bot_type = str(bot_type or "").strip() or DEFAULT_BOT_TYPE

    count = store.count_chunks(client_id, bot_type)
    stored = (datasets.get_status(client_id, bot_type) if datasets is not None else None) or {}
    status = stored.get("knowledge_status") or (STATUS_READY if count > 0 else STATUS_EMPTY)

    return {
        "client_id": client_id,
        "bot_type": bot_type,
        "knowledge_status": status,
        "ready": status in (STATUS_READY, STATUS_NEEDS_REVIEW) or count > 0,
        "chunk_count": count,
        "knowledge_built_at": stored.get("knowledge_built_at"),
        "sections_present": stored.get("sections_present", []),
        "coverage_warnings": stored.get("coverage_warnings", []),
    }
