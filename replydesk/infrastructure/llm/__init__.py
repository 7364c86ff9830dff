from .completion_client import CompletionClient, Completion, CompletionError
