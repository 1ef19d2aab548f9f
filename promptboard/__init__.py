# PromptBoard: project-scoped kanban board with ordered tasks, snapshot
# backups and an LLM-assisted prompt generator.
#
# Components:
#   schema.py           - Data model (Project, Task, Attachment, ColumnId, Priority)
#   store.py            - SQLite persistence layer
#   reconciler.py       - Drag-and-drop placement and ordered upsert/delete plans
#   board.py            - Project-scoped board operations used by the server
#   blobstore.py        - Directory-backed blob store for snapshot artifacts
#   backup.py           - Snapshot creation, checksum skip and retention
#   restore.py          - Load a snapshot back into the store
#   prompts.py          - System prompts for the prompt generator
#   llm.py              - LLM transports (Claude CLI, Anthropic API) and fallback chain
#   prompt_generator.py - Clarifying questions, final prompt and session state
#   config.py           - YAML + environment configuration
#   errors.py           - Exception hierarchy
