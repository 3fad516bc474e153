from pydantic import BaseModel, Field
from typing import Optional


# --- Chat ---
class ChatMessage(BaseModel):
    role: str
    content: str


class CompletionSettingsIn(BaseModel):
    # No range constraints: the dispatcher validates settings
    provider: str = "openai"
    model: str = "gpt-3.5-turbo"
    temperature: float = 0.7
    max_tokens: int = 2000
    top_p: float = 1.0
    frequency_penalty: float = 0.0
    presence_penalty: float = 0.0
    stream: bool = True


class ChatRequest(BaseModel):
    conversation_id: Optional[str] = None
    messages: list[ChatMessage] = Field(..., min_length=1)
    settings: CompletionSettingsIn = Field(default_factory=CompletionSettingsIn)


class UsageResponse(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    cost: float = 0.0
    estimated: bool = False


class ChatCompletionResponse(BaseModel):
    message_id: Optional[str] = None
    conversation_id: Optional[str] = None
    provider: str
    model: str
    content: str
    finish_reason: Optional[str] = None
    usage: UsageResponse


class ErrorResponse(BaseModel):
    kind: str
    message: str
    retryable: bool = False
    partial_text: str = ""


# --- Models ---
class ModelInfo(BaseModel):
    id: str
    provider: str
    input_per_1k: Optional[float] = None
    output_per_1k: Optional[float] = None
    context_budget: Optional[int] = None
    configured: bool = False


class ModelListResponse(BaseModel):
    models: list[ModelInfo]


# --- Health ---
class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str = "0.1.0"
    providers: list[str] = []
    message_count: int = 0


# --- Cost ---
class CostSummaryResponse(BaseModel):
    conversation_id: Optional[str] = None
    total_cost_usd: float = 0.0
    total_prompt_tokens: int = 0
    total_completion_tokens: int = 0
    breakdown: list[dict] = []
