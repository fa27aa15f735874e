"""Classify n8n node types into Langfuse observation types.

Every node span gets a coarse semantic role (``generation``, ``tool``,
``agent``...) so Langfuse can render and filter the trace. The vocabulary of
n8n node types is open-ended, so classification is layered; the first tier
that matches wins:

1.  **Exact sets** - curated node types per observation type. The sets are
    consulted in declaration order, which makes a type listed twice resolve
    to the earlier set.
2.  **Regex rules** - ordered patterns tested against the lower-cased type.
3.  **Category fallback** - the node's n8n category (``Core Nodes``,
    ``Trigger Nodes``...), with control-flow and schedule nodes singled out
    inside ``Core Nodes``.

Types are normalized before lookup, so n8n's namespaced form
(``@n8n/n8n-nodes-langchain.lmChatOpenAi``) classifies like the bare
``LmChatOpenAi``. No match yields None; the caller picks the default.
"""
from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any, Dict, FrozenSet, Optional, Tuple

__all__ = [
    "map_node_to_observation_type",
    "classify",
    "normalize_node_type",
    "is_ai_node",
    "OBS_TYPES",
    "DEFAULT_OBSERVATION_TYPE",
    "AI_NODE_TYPES",
]

OBS_TYPES: Tuple[str, ...] = (
    "agent", "tool", "chain", "retriever", "generation",
    "embedding", "evaluator", "guardrail", "event", "span",
)

DEFAULT_OBSERVATION_TYPE = "span"


def _names(*groups: str) -> FrozenSet[str]:
    """Build a set from whitespace-separated groups of node type names."""
    return frozenset(name for group in groups for name in group.split())


_VECTOR_STORES = ("InMemory", "Milvus", "MongoDBAtlas", "PGVector", "Pinecone",
                  "Qdrant", "Supabase", "Weaviate", "Zep")
# Stores that also ship Insert/Load node variants.
_VECTOR_STORES_WITH_MODES = ("InMemory", "Pinecone", "Supabase", "Zep")

# Declaration order is significant, see module docstring.
EXACT_SETS: Dict[str, FrozenSet[str]] = {
    "agent": _names("Agent AgentTool"),
    "generation": _names(
        "LmChatOpenAi LmOpenAi OpenAi OpenAiAssistant Anthropic GoogleGemini Groq Perplexity",
        "LmChatAnthropic LmChatGoogleGemini LmChatMistralCloud LmChatOpenRouter LmChatXAiGrok",
        # Document extraction node runs an LLM behind the scenes.
        "LimescapeDocs",
    ),
    "embedding": _names(
        "EmbeddingsAwsBedrock EmbeddingsAzureOpenAi EmbeddingsCohere EmbeddingsGoogleGemini",
        "EmbeddingsGoogleVertex EmbeddingsHuggingFaceInference EmbeddingsMistralCloud",
        "EmbeddingsOllama EmbeddingsOpenAi",
    ),
    "retriever": _names(
        "RetrieverContextualCompression RetrieverMultiQuery RetrieverVectorStore",
        "RetrieverWorkflow MemoryChatRetriever",
        " ".join(f"VectorStore{store}" for store in _VECTOR_STORES),
        " ".join(
            f"VectorStore{store}{mode}" for store in _VECTOR_STORES_WITH_MODES for mode in ("Insert", "Load")
        ),
    ),
    "evaluator": _names(
        "SentimentAnalysis TextClassifier InformationExtractor RerankerCohere OutputParserAutofixing"
    ),
    "guardrail": _names("GooglePerspective AwsRekognition"),
    "chain": _names(
        "ChainLlm ChainRetrievalQa ChainSummarization ModelSelector",
        "ToolWorkflow ToolExecutor ToolThink",
        # OutputParserAutofixing stays an evaluator: that set is declared first.
        "OutputParserStructured OutputParserItemList OutputParserAutofixing",
        "TextSplitterCharacterTextSplitter TextSplitterRecursiveCharacterTextSplitter",
        "TextSplitterTokenSplitter",
    ),
}

REGEX_RULES: Tuple[Tuple[str, re.Pattern[str]], ...] = tuple(
    (obs_type, re.compile(pattern))
    for obs_type, pattern in (
        ("agent", r"agent"),
        ("embedding", r"embedding"),
        ("retriever", r"retriev|vectorstore"),
        ("generation", r"lmchat|^lm[a-z]|chat|openai|anthropic|gemini|mistral|groq|cohere"),
        ("tool", r"tool"),
        ("chain", r"chain|textsplitter|parser|memory|workflow"),
        ("evaluator", r"rerank|classif|sentiment|extract"),
        ("guardrail", r"perspective|rekognition|moderation|guardrail"),
    )
)

# Control-flow nodes of the "Core Nodes" category.
INTERNAL_LOGIC = _names(
    "If Switch Set Move Rename Wait WaitUntil",
    "Function FunctionItem Code NoOp ExecuteWorkflow SubworkflowTo",
)
SCHEDULE_TYPES = _names("Schedule Cron ScheduleTrigger")

CATEGORY_ALIASES = {
    "trigger": "Trigger Nodes",
    "transform": "Transform Nodes",
    "ai": "AI/LangChain Nodes",
    "core": "Core Nodes",
}

CATEGORY_HINT_KEYS = ("category", "n8n.node.category", "n8n.node.category_raw")

_NAMESPACE_PREFIXES = (
    "@n8n/n8n-nodes-langchain.",
    "n8n-nodes-langchain.",
    "n8n-nodes-base.",
)


def normalize_node_type(raw: str) -> str:
    """Strip a known namespace prefix and upper-case the first character.

    >>> normalize_node_type("@n8n/n8n-nodes-langchain.lmChatOpenAi")
    'LmChatOpenAi'
    >>> normalize_node_type("n8n-nodes-base.if")
    'If'
    """
    for prefix in _NAMESPACE_PREFIXES:
        if raw.startswith(prefix):
            raw = raw[len(prefix):]
            break
    return raw[:1].upper() + raw[1:]


def _normalize_category(category: Optional[str]) -> Optional[str]:
    if not category:
        return None
    category = category.strip()
    return CATEGORY_ALIASES.get(category.lower(), category)


def _category_fallback(node_type: str, category: Optional[str]) -> Optional[str]:
    """Infer the observation type from the node category.

    Args:
        node_type: Normalized node type, used to single out control-flow and
            schedule nodes inside "Core Nodes".
        category: n8n category or one of its short aliases.
    """
    match _normalize_category(category):
        case "Trigger Nodes":
            return "event"
        case "Transform Nodes" | "AI/LangChain Nodes":
            return "chain"
        case "Core Nodes":
            if node_type in INTERNAL_LOGIC:
                return "chain"
            if node_type in SCHEDULE_TYPES:
                return "event"
            return "tool"
        case _:
            return None


def map_node_to_observation_type(node_type: Optional[str], category: Optional[str]) -> Optional[str]:
    """Classify a node by type, falling back to its category.

    Args:
        node_type: Bare or namespaced n8n node type (``OpenAi``,
            ``n8n-nodes-base.if``).
        category: Optional n8n category (``AI/LangChain Nodes``).

    Returns:
        One of `OBS_TYPES`, or None when no tier matches.
    """
    if not node_type or not isinstance(node_type, str):
        return None
    normalized = normalize_node_type(node_type.strip())
    if not normalized:
        return None
    for obs_type, names in EXACT_SETS.items():
        if normalized in names:
            return obs_type
    lower = normalized.lower()
    for obs_type, pattern in REGEX_RULES:
        if pattern.search(lower):
            return obs_type
    return _category_fallback(normalized, category)


def classify(node_type: Optional[str], hints: Optional[Mapping[str, Any]] = None) -> Optional[str]:
    """Classify ``node_type`` with the category taken from ``hints``.

    The category is the first non-empty string among `CATEGORY_HINT_KEYS`,
    so a flattened node attribute set can be passed as is.
    """
    category = None
    for key in CATEGORY_HINT_KEYS:
        value = (hints or {}).get(key)
        if isinstance(value, str) and value:
            category = value
            break
    return map_node_to_observation_type(node_type, category)


# Node types shipped by the @n8n/n8n-nodes-langchain package. Node spans carry
# n8n.node.is_ai so Langfuse views can be narrowed to the AI part of a run.
AI_NODE_TYPES: FrozenSet[str] = frozenset().union(
    *(EXACT_SETS[t] for t in ("agent", "generation", "embedding", "retriever", "evaluator", "chain")),
    _names(
        "Ollama OpenAiAssistant",
        "LmChatAwsBedrock LmChatAzureOpenAi LmChatCohere LmChatDeepSeek LmChatGoogleVertex",
        "LmChatGroq LmChatOllama LmCohere LmOllama LmOpenHuggingFaceInference",
        "DocumentBinaryInputLoader DocumentDefaultDataLoader DocumentGithubLoader DocumentJsonInputLoader",
        "MemoryBufferWindow MemoryManager MemoryMongoDbChat MemoryPostgresChat MemoryRedisChat MemoryZep",
        "McpClientTool McpTrigger Chat ChatTrigger ManualChatTrigger",
        "ToolCalculator ToolCode ToolHttpRequest ToolSearXng ToolSerpApi ToolVectorStore",
        "ToolWikipedia ToolWolframAlpha",
        "VectorStoreRedis Guardrails",
    ),
)

_AI_NODE_TYPES_LOWER = frozenset(t.lower() for t in AI_NODE_TYPES)


def is_ai_node(node_type: Optional[str], category: Optional[str]) -> bool:
    """Return True for LangChain-package nodes.

    The ``AI/LangChain Nodes`` category is authoritative; otherwise the
    normalized type is looked up case-insensitively in `AI_NODE_TYPES`.
    """
    if not node_type or not isinstance(node_type, str):
        return False
    if _normalize_category(category) == "AI/LangChain Nodes":
        return True
    return normalize_node_type(node_type).lower() in _AI_NODE_TYPES_LOWER
