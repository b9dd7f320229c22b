from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Iterable
from functools import lru_cache
from typing import Any, Literal

from langchain_core.messages import (
    AIMessage,
    BaseMessage,
    HumanMessage,
    SystemMessage,
    trim_messages,
)
from langchain_core.runnables import RunnableConfig
from langchain_google_genai import ChatGoogleGenerativeAI
from langgraph.graph import END, START, MessagesState, StateGraph
from langgraph.prebuilt import ToolNode

from .config import Settings, get_settings
from .envelopes import TOOL_ERROR_MARKER
from .prompts import get_system_prompt
from .schemas import MessageEnvelope
from .tools import get_registered_tools

logger = logging.getLogger(__name__)


def as_langchain_messages(history: Iterable[MessageEnvelope], new_message: str) -> list[BaseMessage]:
    """Convert the client's history plus the new user message to LangChain messages."""
    messages: list[BaseMessage] = []
    for envelope in history:
        if envelope.role == "user":
            messages.append(HumanMessage(content=envelope.content))
        else:
            messages.append(AIMessage(content=envelope.content))
    messages.append(HumanMessage(content=new_message))
    return messages


def _format_tool_error(exc: Exception) -> str:
    return f"{TOOL_ERROR_MARKER} {exc}"


def _log_usage(response: Any) -> None:
    usage = getattr(response, "usage_metadata", None)
    if usage:
        logger.info(
            "[AGENT] Token usage: input=%s output=%s total=%s",
            usage.get("input_tokens"),
            usage.get("output_tokens"),
            usage.get("total_tokens"),
        )


def build_model(settings: Settings) -> ChatGoogleGenerativeAI:
    """Instantiate the Gemini chat model used by the agent node."""
    if not settings.google_api_key:
        raise RuntimeError("No Gemini API key configured (GOOGLE_API_KEY)")
    return ChatGoogleGenerativeAI(
        model=settings.gemini_model,
        api_key=settings.google_api_key,
        temperature=settings.llm_temperature,
        max_output_tokens=settings.llm_max_output_tokens,
        timeout=60,
        max_retries=2,
    )


def create_graph(settings: Settings | None = None, model: Any = None):
    """Compile the agent graph: model node, tool node, and the loop between them."""
    resolved_settings = settings or get_settings()
    tools = list(get_registered_tools())
    model_with_tools = (model or build_model(resolved_settings)).bind_tools(tools)

    trimmer = trim_messages(
        max_tokens=resolved_settings.history_max_messages,
        strategy="last",
        token_counter=len,
        include_system=True,
        allow_partial=False,
        start_on="human",
    )

    async def call_model(state: MessagesState, config: RunnableConfig):
        system_message = SystemMessage(content=get_system_prompt(override=resolved_settings.system_prompt))
        messages = await trimmer.ainvoke([system_message, *state["messages"]])
        response = await model_with_tools.ainvoke(messages, config=config)
        _log_usage(response)
        return {"messages": [response]}

    def should_continue(state: MessagesState) -> Literal["tools", END]:
        last_message = state["messages"][-1]
        if getattr(last_message, "tool_calls", None):
            return "tools"
        return END

    workflow = StateGraph(MessagesState)
    workflow.add_node("agent", call_model)
    workflow.add_node("tools", ToolNode(tools, handle_tool_errors=_format_tool_error))
    workflow.add_edge(START, "agent")
    workflow.add_conditional_edges("agent", should_continue, ["tools", END])
    workflow.add_edge("tools", "agent")
    return workflow.compile()


@lru_cache
def get_graph():
    return create_graph(get_settings())


class ChatAgent:
    """Event source for the relay, backed by the compiled agent graph."""

    def __init__(self, graph: Any = None) -> None:
        self._graph = graph

    async def stream_events(
        self, history: list[MessageEnvelope], new_message: str, chat_id: str
    ) -> AsyncIterator[dict[str, Any]]:
        graph = self._graph if self._graph is not None else get_graph()
        config: RunnableConfig = {
            "configurable": {"thread_id": chat_id},
            "run_name": "chat",
        }
        inputs = {"messages": as_langchain_messages(history, new_message)}
        async for event in graph.astream_events(inputs, config=config, version="v2"):
            yield event


def get_agent() -> ChatAgent:
    return ChatAgent()
