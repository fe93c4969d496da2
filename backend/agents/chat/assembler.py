"""
Prompt & Tool Assembler.

Pure functions: intents select instruction modules, tool groups select
function declarations. Both are unions, so adding an intent or a group can
only add modules or tools. A tool is never offered unless its group was
selected.
"""

from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Tuple

from backend.agents.chat.prompts import (
    ALWAYS_INCLUDED_MODULES,
    INTENT_MODULES,
    MODULE_ORDER,
    PROMPT_MODULES,
    build_context_block,
)
from backend.agents.chat.schemas import TOOL_CATALOG
from backend.agents.chat.types import ContextPack


@dataclass(frozen=True)
class AssembledPrompt:
    system_prompt: str
    modules: Tuple[str, ...]
    tools: List[Dict[str, Any]]

    @property
    def tool_names(self) -> List[str]:
        return [tool["name"] for tool in self.tools]


def select_modules(intents: Iterable[str]) -> Tuple[str, ...]:
    selected = set(ALWAYS_INCLUDED_MODULES)
    for intent in intents:
        selected.update(INTENT_MODULES.get(intent, ()))
    return tuple(name for name in MODULE_ORDER if name in selected)


def select_tools(tool_groups: Iterable[str]) -> List[Dict[str, Any]]:
    groups = set(tool_groups)
    return [entry["declaration"] for entry in TOOL_CATALOG.values() if entry["group"] in groups]


def assemble(
    intents: Iterable[str],
    tool_groups: Iterable[str],
    context: ContextPack,
    today: Optional[date] = None,
) -> AssembledPrompt:
    """
    Build the system prompt and tool list for one request.

    Args:
        intents: Classified intent tags
        tool_groups: Classified tool groups
        context: Context pack (currency, locale, active invoice)
        today: Date shown to the model (defaults to today)
    """
    modules = select_modules(intents)
    sections = [PROMPT_MODULES[name] for name in modules]
    sections.append(build_context_block(context, (today or date.today()).isoformat()))

    return AssembledPrompt(
        system_prompt="\n\n".join(sections),
        modules=modules,
        tools=select_tools(tool_groups),
    )
