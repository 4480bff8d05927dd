"""Constants shared across the orchestrator."""

APP_NAME = "task-orchestrator"

# Checkpoint names
AUTOSAVE_CHECKPOINT_NAME = "Auto-save checkpoint"
DEFAULT_CHECKPOINT_NAME = "Checkpoint"

# Actions whose "path" parameter is recorded as a file change
FILE_ACTIONS = frozenset({"create_file", "modify_file", "delete_file"})

# Command words refused by the default command validator
BLOCKED_COMMANDS = (
    "rm -rf",
    "format",
    "del /s /q",
    "shutdown",
    "reboot",
    "sudo",
    "su",
)

# Directories skipped when listing workspace files
IGNORED_DIRECTORIES = frozenset(
    {".git", "node_modules", "__pycache__", ".venv", "venv", "dist", "build"}
)
