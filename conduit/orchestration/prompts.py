"""System directive and continuation wording for each model invocation."""

from datetime import date
from typing import List, Optional

from conduit.config import ConduitSettings
from conduit.orchestration.models import QueryMode

BASE_DIRECTIVE = """You are a data assistant connected to live business tools. Today is {today}.
Available tools: {tool_names}"""

SIMPLE_MODE_SECTION = """SIMPLE MODE - Direct Data Retrieval:
- Call only the minimum tool(s) required to answer the question.
- Do not add filters or parameters the user did not ask for.
- Answer directly with minimal context ("You have 364 customers", not just "364").
- Do not add analysis or recommendations unless asked.
- For list results show only the essential fields."""

ANALYSIS_MODE_SECTION = """ANALYSIS MODE - Comprehensive Analysis:
- Break the question into the data points it needs and plan the tool calls.
- Start with totals and overviews, then drill into breakdowns and comparisons.
- Request independent data in parallel within one response.
- Default to the current year ({year}) when no timeframe is given; use {month} for "this month".
- Calculate derived metrics (growth, percentages, ratios) only from fetched data.
- Present findings, then insights grounded in those findings."""

DATA_INTEGRITY_SECTION = """DATA INTEGRITY (mandatory):
- Every number you state must come from a tool result in this conversation.
- If a result is marked "empty" or "failed", say plainly that the data is not available.
- Never estimate, invent, extrapolate or use industry averages to fill gaps.
- If data is limited, say so and work only with the records you have."""

FOLLOWUP_SECTION = """ITERATION {iteration} of {max_iterations}:
- Prefer the data already fetched. Only call a tool if something essential is still missing.
- Do not repeat a tool call with the same parameters."""

FINAL_SECTION = """FINAL ITERATION:
- Do not request any tools. Answer now using only the data already fetched."""

LIMIT_HINT = (
    "When a tool accepts a limit parameter, request at most {limit} records in this round."
)


def progressive_record_limit(iteration: int, settings: ConduitSettings) -> int:
    """Record-count hint for an iteration: initial * multiplier^(iteration-1), capped."""
    exponent = max(iteration, 1) - 1
    limit = settings.initial_record_limit * settings.record_limit_multiplier**exponent
    return int(min(limit, settings.max_record_limit))


def build_system_directive(
    mode: QueryMode,
    iteration: int,
    max_iterations: int,
    tool_names: List[str],
    settings: ConduitSettings,
    today: Optional[date] = None,
    tools_offered: bool = True,
) -> str:
    """Build the system directive for one model invocation.

    Later iterations get stricter "use what you already have" language;
    the final iteration (or a run with no tools offered) forbids tool use.
    """
    today = today or date.today()
    sections = [
        BASE_DIRECTIVE.format(
            today=today.isoformat(),
            tool_names=", ".join(tool_names) if tool_names and tools_offered else "none",
        )
    ]

    if mode == QueryMode.SIMPLE:
        sections.append(SIMPLE_MODE_SECTION)
    else:
        sections.append(
            ANALYSIS_MODE_SECTION.format(
                year=today.year, month=today.strftime("%Y-%m")
            )
        )

    sections.append(DATA_INTEGRITY_SECTION)

    if not tools_offered or iteration >= max_iterations:
        sections.append(FINAL_SECTION)
    else:
        if iteration > 1:
            sections.append(
                FOLLOWUP_SECTION.format(
                    iteration=iteration, max_iterations=max_iterations
                )
            )
        sections.append(
            LIMIT_HINT.format(limit=progressive_record_limit(iteration, settings))
        )

    return "\n\n".join(sections)


def build_continuation_instruction(
    mode: QueryMode,
    any_failed: bool,
    any_empty: bool,
    is_penultimate: bool,
    budget_exhausted: bool = False,
) -> str:
    """Wording of the synthetic user turn appended after each tool round."""
    lines = ["The tool results above are now available."]

    if any_failed or any_empty:
        lines.append(
            "Some results are marked empty or failed. For those, state that no data "
            "is available. Do not fabricate, estimate or guess any figures."
        )
    if any_failed:
        lines.append(
            "Do not retry a failed tool with identical parameters; mention the failure briefly."
        )

    if budget_exhausted:
        lines.append(
            "The data budget for this request is used up. Do not call more tools; "
            "answer with the data already fetched."
        )
    elif is_penultimate:
        lines.append(
            "You have one response left. Answer now using only the data already fetched."
        )
    elif mode == QueryMode.SIMPLE:
        lines.append("Answer the question directly and concisely.")
    else:
        lines.append(
            "If essential data is still missing you may call more tools; "
            "otherwise provide the complete analysis."
        )

    return "\n".join(lines)
