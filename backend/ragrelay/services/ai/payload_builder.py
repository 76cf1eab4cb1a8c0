"""
Provider payload builder.

Maps the canonical (instruction, prior turns, input, params) tuple onto the
wire schema of the target model's family:

Family A (GPT):
    {"messages": [{"role": "system", "content": instruction},
                  *prior,
                  {"role": "user", "content": input}],
     **params}

Family B (Gemini):
    {"contents": [{"role": "user", "parts": [{"text": instruction}]},
                  *prior (as parts, assistant -> model),
                  {"role": "user", "parts": [{"text": input}]}],
     "generationConfig": params}

Family C (Claude):
    {"messages": [*prior, {"role": "user", "content": input}],
     "system": instruction,
     **params}
"""
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from ragrelay.core.logging import get_logger
from ragrelay.services.ai.registry import ProviderFamily, resolve_chat_family
from ragrelay.services.ai.schema import ConversationTurn

logger = get_logger(__name__)

STRUCTURAL_KEYS = frozenset({"messages", "contents", "system", "generationConfig"})

CONTEXT_DELIMITER = "```"


def build_rag_instruction(instruction: str, contents: Sequence[str]) -> str:
    """Inline retrieved contents into the instruction between triple backticks."""
    joined = ",".join(contents)
    return f" {instruction} {CONTEXT_DELIMITER} {joined} {CONTEXT_DELIMITER} "


def _merge_params(payload: Dict[str, Any], params: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    if not params:
        return payload
    ignored = sorted(key for key in params if key in STRUCTURAL_KEYS)
    if ignored:
        logger.warning("chat_params_structural_keys_ignored", keys=ignored)
    payload.update({k: v for k, v in params.items() if k not in STRUCTURAL_KEYS})
    return payload


def _build_gpt(
    input_text: str,
    instruction: str,
    context: Sequence[ConversationTurn],
    params: Optional[Mapping[str, Any]],
) -> Dict[str, Any]:
    messages: List[Dict[str, Any]] = [{"role": "system", "content": instruction}]
    messages.extend(turn.model_dump() for turn in context)
    messages.append({"role": "user", "content": input_text})
    return _merge_params({"messages": messages}, params)


def _build_gemini(
    input_text: str,
    instruction: str,
    context: Sequence[ConversationTurn],
    params: Optional[Mapping[str, Any]],
) -> Dict[str, Any]:
    contents: List[Dict[str, Any]] = [{"role": "user", "parts": [{"text": instruction}]}]
    for turn in context:
        role = "model" if turn.role == "assistant" else "user"
        contents.append({"role": role, "parts": [{"text": turn.content}]})
    contents.append({"role": "user", "parts": [{"text": input_text}]})

    payload: Dict[str, Any] = {"contents": contents}
    if params:
        payload["generationConfig"] = dict(params)
    return payload


def _build_claude(
    input_text: str,
    instruction: str,
    context: Sequence[ConversationTurn],
    params: Optional[Mapping[str, Any]],
) -> Dict[str, Any]:
    # Claude takes no system entries inside the message list.
    system_parts = [instruction]
    messages: List[Dict[str, Any]] = []
    for turn in context:
        if turn.role == "system":
            system_parts.append(turn.content)
        else:
            messages.append(turn.model_dump())
    messages.append({"role": "user", "content": input_text})
    return _merge_params({"messages": messages, "system": "\n".join(system_parts)}, params)


_BUILDERS: Dict[ProviderFamily, Callable[..., Dict[str, Any]]] = {
    ProviderFamily.GPT: _build_gpt,
    ProviderFamily.GEMINI: _build_gemini,
    ProviderFamily.CLAUDE: _build_claude,
}


def build_chat_payload(
    model_name: str,
    input_text: str,
    instruction: str,
    context: Optional[Sequence[ConversationTurn]] = None,
    chat_params: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Build the wire payload for ``model_name``.

    Args:
        model_name: Target chat model
        input_text: The user's query
        instruction: System instruction (retrieved content already inlined)
        context: Prior canonical turns, oldest first
        chat_params: Optional model-specific parameters (temperature, max_tokens, ...)

    Raises:
        UnsupportedModelError if the model matches no family.
    """
    family = resolve_chat_family(model_name)
    payload = _BUILDERS[family](input_text, instruction, list(context or []), chat_params)
    logger.debug(
        "chat_payload_built",
        model=model_name,
        family=family.value,
        context_turns=len(context or []),
        with_params=bool(chat_params),
    )
    return payload
