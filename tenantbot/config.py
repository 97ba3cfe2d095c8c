import os
from dotenv import load_dotenv
from pathlib import Path

# Load environment variables from .env file with explicit path
load_dotenv(dotenv_path=Path(__file__).parent.parent / '.env')

# Knowledge store (SQLite file holding chunks, the FTS index and raw datasets)
KNOWLEDGE_DB_PATH = os.getenv("KNOWLEDGE_DB_PATH", "knowledge_store.db")
KNOWLEDGE_DB_TIMEOUT = float(os.getenv("KNOWLEDGE_DB_TIMEOUT", "5"))  # seconds to wait on a locked db

# OpenAI Configuration
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o")

# Prompt budget
# Only used to warn about oversized prompts, the assembled messages are never trimmed.
MAX_PROMPT_TOKENS = int(os.getenv("MAX_PROMPT_TOKENS", "3500"))
