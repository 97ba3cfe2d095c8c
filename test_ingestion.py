#!/usr/bin/env python3
"""
Test script for the ingestion pipeline (save raw dataset, chunk, replace)
"""
import os
import sqlite3
import tempfile
from unittest.mock import MagicMock

import pytest

from tenantbot.rag.chunk_store import KnowledgeStore
from tenantbot.rag.dataset_store import DatasetStore
from tenantbot.rag.errors import ValidationError
from tenantbot.rag.ingestion import get_status, ingest, prepare_sections, rebuild

FAQS = "\n\n".join(f"Q{i}?\nA{i}." for i in range(1, 11))


def make_stores():
    tmp_dir = tempfile.mkdtemp(prefix="tenantbot_test_")
    path = os.path.join(tmp_dir, "knowledge.db")
    return KnowledgeStore(db_path=path), DatasetStore(db_path=path)


def test_ingest_chunks_and_saves_raw_dataset():
    store, datasets = make_stores()
    raw = {"menu": "Margherita 10\nPepperoni 12", "hours": "Daily 12-23", "faqs": FAQS}

    result = ingest(store, datasets, "c1", "restaurant", raw)

    assert result["chunks_inserted"] == 4  # menu 1, hours 1, faqs 2
    assert result["version"] == 1
    assert result["sections_present"] == ["menu", "hours", "faqs"]
    assert store.count_chunks("c1", "restaurant") == 4

    saved = datasets.get_dataset("c1", "restaurant")
    assert saved.raw_sections == raw
    assert saved.updated_at >= saved.created_at


def test_reingest_replaces_previous_chunks():
    store, datasets = make_stores()
    ingest(store, datasets, "c1", None, {"menu": "Old pizza menu"})
    first = datasets.get_dataset("c1")

    result = ingest(store, datasets, "c1", "", {"menu": "New sushi menu"})

    assert result["bot_type"] == "default"
    assert result["version"] == 2
    assert [c.text for c in store.list_chunks("c1", "default")] == ["New sushi menu"]
    assert store.search("c1", "default", "pizza") == []
    second = datasets.get_dataset("c1")
    assert second.raw_sections == {"menu": "New sushi menu"}
    assert second.created_at == first.created_at


def test_validation_happens_before_storage():
    store, datasets = MagicMock(), MagicMock()
    bad_payloads = (
        ("", {"menu": "x"}),
        (None, {"menu": "x"}),
        ("c1", {}),
        ("c1", None),
        ("c1", {"menu": "   ", "hours": None}),
        ("c1", {"mixed": "\n\n"}),
    )
    for client_id, raw in bad_payloads:
        with pytest.raises(ValidationError):
            ingest(store, datasets, client_id, "default", raw)
    store.replace_chunks_versioned.assert_not_called()
    store.replace_chunks.assert_not_called()
    datasets.save_dataset.assert_not_called()


def test_blank_sections_are_rejected_and_keep_existing_knowledge():
    store, datasets = make_stores()
    ingest(store, datasets, "c1", "default", {"menu": "Pizza"})

    with pytest.raises(ValidationError):
        ingest(store, datasets, "c1", "default", {"menu": "   "})

    assert [c.text for c in store.list_chunks("c1", "default")] == ["Pizza"]
    assert datasets.get_dataset("c1", "default").raw_sections == {"menu": "Pizza"}
    assert store.current_generation("c1", "default") == 1


def test_version_is_the_generation_written_by_this_build():
    store, datasets = make_stores()
    ingest(store, datasets, "c1", "default", {"menu": "Pizza"})
    # Another writer moves the generation on after this build
    store.replace_chunks_versioned = MagicMock(return_value=(1, 2))
    store.current_generation = MagicMock(return_value=99)

    result = ingest(store, datasets, "c1", "default", {"menu": "Sushi"})

    assert result["version"] == 2
    store.current_generation.assert_not_called()


def test_prepare_sections_aliases_and_mixed():
    sections = prepare_sections({
        "FAQ": "Q1?\nA1.",
        "qna": "Q2?\nA2.",
        "properties": "Villa A\r\n\r\n\r\n\r\nFlat B",
        "mixed": "## Working Hours\nDaily 9-5\n## Policies\nNo pets",
        "hours": "Closed on holidays",
    })
    assert sections == {
        "faqs": "Q1?\nA1.\n\nQ2?\nA2.",
        "listings": "Villa A\n\nFlat B",
        "hours": "Daily 9-5\n\nClosed on holidays",
        "policies": "No pets",
    }


def test_coverage_report():
    store, datasets = make_stores()
    result = ingest(store, datasets, "c1", "realestate", {"listings": "Villa A\n\nFlat B"})
    assert result["knowledge_status"] == "needs_review"
    assert "paymentPlans" in result["missing_sections"]
    assert "No payment plans detected." in result["coverage_warnings"]
    assert "No listings detected." not in result["coverage_warnings"]

    full = {
        "offers": "Free delivery", "hours": "9-5", "faqs": "Q?\nA.", "policies": "No refunds",
        "profile": "Corner pharmacy", "contact": "+20 100 000 0000",
    }
    result = ingest(store, datasets, "c2", "default", full)
    assert result["knowledge_status"] == "ready"
    assert result["coverage_warnings"] == []


def test_rebuild_from_stored_dataset():
    store, datasets = make_stores()
    ingest(store, datasets, "c1", "default", {"listings": "Villa A\n\nFlat B", "hours": "9-5"})
    store.delete_chunks("c1")

    result = rebuild(store, datasets, "c1", "default")
    assert result["chunks_inserted"] == 3
    assert [c.text for c in store.list_chunks("c1", "default", section="listings")] == ["Villa A", "Flat B"]

    ingest(store, datasets, "c1", "realestate", {"listings": "Villa A"})
    assert datasets.list_bot_types("c1") == ["default", "realestate"]


def test_rebuild_without_dataset():
    store, datasets = make_stores()
    with pytest.raises(ValidationError):
        rebuild(store, datasets, "missing", "default")
    with pytest.raises(ValidationError):
        rebuild(store, datasets, "", "default")


def test_status_is_recorded_by_each_build():
    store, datasets = make_stores()
    assert get_status(store, datasets, "c1", "realestate")["knowledge_status"] == "empty"

    ingest(store, datasets, "c1", "realestate", {"listings": "Villa A\n\nFlat B"})
    status = get_status(store, datasets, "c1", "realestate")
    assert status["knowledge_status"] == "needs_review"
    assert status["ready"] is True
    assert status["chunk_count"] == 2
    assert status["sections_present"] == ["listings"]
    assert "No payment plans detected." in status["coverage_warnings"]
    assert status["knowledge_built_at"] is not None

    # Rebuilding refreshes the recorded report
    first_built = status["knowledge_built_at"]
    rebuild(store, datasets, "c1", "realestate")
    assert get_status(store, datasets, "c1", "realestate")["knowledge_built_at"] >= first_built


def test_status_without_recorded_report_uses_chunk_count():
    store, datasets = make_stores()
    store.replace_chunks("c1", "default", [("menu", "Pizza")])
    status = get_status(store, datasets, "c1", None)
    assert status["bot_type"] == "default"
    assert status["knowledge_status"] == "ready"
    assert status["sections_present"] == []
    assert status["knowledge_built_at"] is None


def test_dataset_store_adds_status_columns_to_old_files():
    tmp_dir = tempfile.mkdtemp(prefix="tenantbot_test_")
    path = os.path.join(tmp_dir, "knowledge.db")
    conn = sqlite3.connect(path)
    conn.execute(
        "CREATE TABLE datasets (client_id TEXT NOT NULL, bot_type TEXT NOT NULL, "
        "raw_sections TEXT NOT NULL, created_at TEXT NOT NULL, updated_at TEXT NOT NULL, "
        "PRIMARY KEY (client_id, bot_type))"
    )
    conn.commit()
    conn.close()

    datasets = DatasetStore(db_path=path)
    datasets.save_dataset("c1", "default", {"hours": "9-5"})
    assert datasets.save_status("c1", "default", {"knowledge_status": "ready"}) is True
    assert datasets.get_status("c1", "default")["knowledge_status"] == "ready"
    assert datasets.save_status("missing", "default", {"knowledge_status": "ready"}) is False


if __name__ == "__main__":
    test_ingest_chunks_and_saves_raw_dataset()
    test_reingest_replaces_previous_chunks()
    test_validation_happens_before_storage()
    test_blank_sections_are_rejected_and_keep_existing_knowledge()
    test_version_is_the_generation_written_by_this_build()
    test_prepare_sections_aliases_and_mixed()
    test_coverage_report()
    test_rebuild_from_stored_dataset()
    test_rebuild_without_dataset()
    test_status_is_recorded_by_each_build()
    test_status_without_recorded_report_uses_chunk_count()
    test_dataset_store_adds_status_columns_to_old_files()
    print("✅ ALL INGESTION TESTS PASSED!")
