from unillm.cancellation import CancellationToken
from unillm.config import ProviderConfig, profile_config
from unillm.errors import (
    AuthError,
    CancelledStreamError,
    DecodeError,
    ErrorKind,
    InvalidRequestError,
    LLMError,
    ProviderError,
    RateLimitError,
    RequestTimeoutError,
    TransportError,
)
from unillm.events import (
    Error,
    Finish,
    ProviderMetadata,
    ReasoningDelta,
    ReasoningEnd,
    ReasoningStart,
    RunCompleteEvent,
    RunItemEvent,
    StreamPart,
    TextDelta,
    TextEnd,
    TextStart,
    ToolCallDelta,
    ToolCallEnd,
    ToolCallStart,
)
from unillm.instrumentation import instrument, uninstrument
from unillm.message import Message, MessageRole, ToolCallRequestMessage, ToolCallResultMessage
from unillm.provider import (
    AnthropicProvider,
    Capability,
    DeepSeekProvider,
    GroqProvider,
    ModelProvider,
    OllamaProvider,
    OpenAICompatibleProvider,
    OpenAIProvider,
    OpenRouter,
    Unsupported,
    VLLMProvider,
    XAIProvider,
)
from unillm.registry import ProviderRegistry, default_registry
from unillm.response import ChatResponse, UsageInfo
from unillm.runner import Runner, RunResult
from unillm.streaming import FragmentMode, ToolCall
from unillm.tools import LLMRecoverableError, Tool, ToolRegistry, tool

__version__ = "0.1.0"
