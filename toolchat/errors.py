"""Exception hierarchy for toolchat."""


class ToolchatError(Exception):
    """Base exception for toolchat."""


class UnknownTool(ToolchatError, KeyError):
    """Raised when a tool name is not in the registry."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message.
        return str(self.args[0]) if self.args else "Unknown tool"


class InvalidArguments(ToolchatError, ValueError):
    """Raised when tool arguments fail schema validation."""


class HandlerFailure(ToolchatError):
    """Raised when a tool body fails while executing."""

    def __init__(self, tool_name: str, cause: BaseException) -> None:
        super().__init__(f"Tool '{tool_name}' encountered an error: {cause}")
        self.tool_name = tool_name
        self.cause = cause


class InvalidSchedule(ToolchatError, ValueError):
    """Raised for a malformed trigger spec or an unknown task id."""


class CompletionStreamError(ToolchatError):
    """Raised when the model-completion request fails."""


class InvalidTransition(ToolchatError):
    """Raised when a tool call status would move backwards."""
