"""Multi-tenant chatbot knowledge core."""
