"""Tag protocol: extraction, sanitizing, and problem-report encoding."""

from .paths import normalize_path
from .problems import (
    Problem,
    ProblemReport,
    create_problem_fix_prompt,
    escape_xml,
    parse_problem_reports,
    render_problem_report,
)
from .sanitizer import (
    THINK_CLOSE,
    THINK_OPEN,
    clean_full_response,
    escape_protocol_tags,
    remove_non_essential_tags,
    remove_problem_report_tags,
    remove_protocol_tags,
    remove_thinking_tags,
)
from .tags import (
    AddDependency,
    ChatSummary,
    Command,
    Delete,
    ExecuteSql,
    Rename,
    ResponseEdits,
    WriteFile,
    extract_edit_records,
    get_add_dependency_tags,
    get_chat_summary_tag,
    get_command_tags,
    get_delete_tags,
    get_dependency_packages,
    get_execute_sql_tags,
    get_rename_tags,
    get_write_tags,
    has_unclosed_write,
)

__all__ = [
    "normalize_path",
    "Problem",
    "ProblemReport",
    "create_problem_fix_prompt",
    "escape_xml",
    "parse_problem_reports",
    "render_problem_report",
    "THINK_CLOSE",
    "THINK_OPEN",
    "clean_full_response",
    "escape_protocol_tags",
    "remove_non_essential_tags",
    "remove_problem_report_tags",
    "remove_protocol_tags",
    "remove_thinking_tags",
    "AddDependency",
    "ChatSummary",
    "Command",
    "Delete",
    "ExecuteSql",
    "Rename",
    "ResponseEdits",
    "WriteFile",
    "extract_edit_records",
    "get_add_dependency_tags",
    "get_chat_summary_tag",
    "get_command_tags",
    "get_delete_tags",
    "get_dependency_packages",
    "get_execute_sql_tags",
    "get_rename_tags",
    "get_write_tags",
    "has_unclosed_write",
]
