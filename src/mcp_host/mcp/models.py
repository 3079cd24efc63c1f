"""
MCP protocol data models.

Models use the camelCase wire names as aliases and keep unknown fields, so
a server's declarations can be handed back to callers verbatim.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    def to_wire(self) -> Dict[str, Any]:
        """Dump using wire field names, omitting unset optional fields."""
        return self.model_dump(by_alias=True, exclude_none=True)


class Implementation(_WireModel):
    """Name and version of a client or server implementation."""

    name: str
    version: str = ""


class Tool(_WireModel):
    """A tool declared by a server; never mutated by the client."""

    name: str
    description: Optional[str] = None
    input_schema: Dict[str, Any] = Field(default_factory=dict, alias="inputSchema")

    @property
    def required_arguments(self) -> List[str]:
        return list(self.input_schema.get("required") or [])

    @property
    def properties(self) -> Dict[str, Any]:
        return dict(self.input_schema.get("properties") or {})


class Resource(_WireModel):
    uri: str
    name: str
    description: Optional[str] = None
    mime_type: Optional[str] = Field(default=None, alias="mimeType")


class PromptArgument(_WireModel):
    name: str
    description: Optional[str] = None
    required: Optional[bool] = None


class Prompt(_WireModel):
    name: str
    description: Optional[str] = None
    arguments: List[PromptArgument] = Field(default_factory=list)


class CallToolResult(_WireModel):
    """Opaque content list plus the server's error flag, propagated verbatim."""

    content: List[Dict[str, Any]] = Field(default_factory=list)
    is_error: bool = Field(default=False, alias="isError")

    @property
    def text(self) -> str:
        """Concatenated text of all text content items."""
        return "\n".join(
            item.get("text", "") for item in self.content if item.get("type") == "text"
        )


class ResourceContents(_WireModel):
    uri: str
    mime_type: Optional[str] = Field(default=None, alias="mimeType")
    text: Optional[str] = None
    blob: Optional[str] = None


class ReadResourceResult(_WireModel):
    contents: List[ResourceContents] = Field(default_factory=list)


class PromptMessage(_WireModel):
    role: str
    content: Dict[str, Any]


class GetPromptResult(_WireModel):
    description: Optional[str] = None
    messages: List[PromptMessage] = Field(default_factory=list)


class InitializeResult(_WireModel):
    """Server answer to the initialize handshake."""

    protocol_version: str = Field(alias="protocolVersion")
    capabilities: Dict[str, Any] = Field(default_factory=dict)
    server_info: Implementation = Field(alias="serverInfo")
    instructions: Optional[str] = None
