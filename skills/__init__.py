"""Owner-only skills executed under governance policy."""

from skills.executor import MAX_OUTPUT, exec_command, list_skills, read_path

__all__ = ["MAX_OUTPUT", "exec_command", "list_skills", "read_path"]
