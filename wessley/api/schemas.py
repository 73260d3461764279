from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Maximum RAG query length in characters
MAX_QUERY_LENGTH = 2000


class _CamelModel(BaseModel):
    """Accepts the browser's camelCase keys while exposing snake_case attributes."""

    model_config = ConfigDict(populate_by_name=True)


class ChatTurn(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class ChatRequest(BaseModel):
    messages: List[ChatTurn] = Field(default_factory=list)
    context: Optional[Dict[str, Any]] = None


class BenchChatRequest(_CamelModel):
    user_message: Optional[str] = Field(default=None, alias="userMessage")
    conversation_history: List[Dict[str, Any]] = Field(
        default_factory=list, alias="conversationHistory"
    )
    is_first_message: bool = Field(default=False, alias="isFirstMessage")

    @field_validator("conversation_history", mode="before")
    @classmethod
    def _none_history(cls, value: Any) -> Any:
        return value or []


class GenerateTitleRequest(_CamelModel):
    user_message: Optional[str] = Field(default=None, alias="userMessage")
    assistant_message: Optional[str] = Field(default=None, alias="assistantMessage")


class VehicleContext(BaseModel):
    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None


class ChatMessageRequest(_CamelModel):
    chat_id: Optional[str] = Field(default=None, alias="chatId")
    user_message: Optional[str] = Field(default=None, alias="userMessage")
    vehicle: Optional[VehicleContext] = None


class IngestVehicle(BaseModel):
    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None


class IngestRequest(BaseModel):
    pdf_url: Optional[str] = None
    vehicle: Optional[IngestVehicle] = None


class RagIngestRequest(BaseModel):
    file_content: Optional[str] = None
    file_name: Optional[str] = None
    file_type: Optional[str] = None
    vehicle_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class RagQueryRequest(_CamelModel):
    query: Optional[str] = None
    workspace_id: Optional[str] = Field(default=None, alias="workspaceId")
    vehicle_id: Optional[str] = Field(default=None, alias="vehicleId")
    system_name: Optional[str] = Field(default=None, alias="systemName")
    collection: Optional[str] = None
    limit: Optional[int] = None
    threshold: Optional[float] = None
    include_graph: bool = Field(default=False, alias="includeGraph")


class NetlistifyRequest(_CamelModel):
    """``action`` plus free-form parameters forwarded to netlistify."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    action: Optional[str] = None
    workspace_id: Optional[str] = Field(default=None, alias="workspaceId")

    def params(self) -> Dict[str, Any]:
        return dict(self.model_extra or {})


class CheckoutRequest(BaseModel):
    tier: Optional[str] = None


class SearchRequest(BaseModel):
    query: Any = None
    limit: int = Field(default=10, ge=1)
    types: Optional[List[str]] = None


class WaitlistRequest(BaseModel):
    email: Optional[str] = None


class ScraperProgress(BaseModel):
    documents_scraped: int = 0
    vectors_indexed: int = 0
    errors: int = 0


class ScraperError(BaseModel):
    source: str
    message: str
    timestamp: str


class ScraperStatusUpdate(BaseModel):
    phase: Optional[Literal["reddit", "forums", "youtube", "parts", "idle"]] = None
    progress: Optional[ScraperProgress] = None
    current_source: Optional[str] = None
    eta_hours: Optional[float] = None
    last_error: Optional[ScraperError] = None
    started_at: Optional[str] = None
