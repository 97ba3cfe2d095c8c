"""
RAG (Retrieval Augmented Generation) module for the tenant chatbots.

This package grounds bot replies in each client's own knowledge base using
lexical (full-text) retrieval over section-chunked client data.

Components:
    - sections: Section name aliases and '## Heading' mixed-document splitting
    - chunker: Splits raw section text into chunks with per-section policies
    - chunk_store: SQLite chunk storage with an FTS5 relevance index
    - dataset_store: Raw section text kept for rebuilds
    - ingestion: Raw sections -> chunks -> store, with a coverage report
    - retriever: Relevance search, recency fallback, per-section caps
    - prompt_builder: Renders grouped chunks into the completion messages
    - responder: Hands the messages to the OpenAI chat completion API
"""
