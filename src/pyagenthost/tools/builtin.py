from __future__ import annotations

from .registry import ToolRegistry

from .builtin_tools.glob_tool import GlobTool
from .builtin_tools.grep_tool import GrepTool
from .builtin_tools.file_read import ReadFileTool
from .builtin_tools.file_write import WriteFileTool
from .builtin_tools.file_edit import EditFileTool
from .builtin_tools.bash_tool import BashTool, BashOutputTool, KillShellTool
from .builtin_tools.webfetch_tool import WebFetchTool
from .builtin_tools.todo_tools import TodoReadTool, TodoWriteTool

def register_builtin_tools(registry: ToolRegistry) -> None:
    registry.register(ReadFileTool())
    registry.register(WriteFileTool())
    registry.register(EditFileTool())
    registry.register(GlobTool())
    registry.register(GrepTool())
    registry.register(BashTool())
    registry.register(BashOutputTool())
    registry.register(KillShellTool())
    registry.register(WebFetchTool())
    registry.register(TodoReadTool())
    registry.register(TodoWriteTool())
