# Infrastructure Layer
# ====================
# Contains all external service integrations:
# - llm/: OpenAI-compatible chat completion client
# - persistence/: SQLite repository and the async ReviewStore adapter
# - ratelimit/: Fixed-window rate limiter with a pluggable counter store
# - importer/: CSV/Excel review import
# - config/: Environment and settings management
#
# This layer can be replaced entirely without affecting domain/application layers.
