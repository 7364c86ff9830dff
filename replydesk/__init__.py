# ReplyDesk - AI Review Reply Automation
# ======================================
# Drafts on-brand replies to customer reviews and builds weekly digests.
#
# ARCHITECTURE LAYERS:
# - Presentation:   FastAPI JSON API and CLI runner
# - Application:    Reply generation, batch orchestration, insights, service facade
# - Domain:         Review model, brand voice, fallback templates, insights schema
# - Infrastructure: LLM client, SQLite persistence, rate limiting, config, importer
#
# The AI provider and the store sit behind small interfaces so either can be
# swapped without touching the application layer.

__version__ = "0.3.0"
