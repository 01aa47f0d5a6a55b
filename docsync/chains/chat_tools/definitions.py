"""Tool definitions offered to the chat model.

Five commands. One saves the request summary directly; the other four ask the
engine to generate a document once the current reply has finished.
"""

from typing import Any


def _generation_tool(name: str, document: str) -> dict[str, Any]:
    return {
        "name": name,
        "description": (
            f"Generate or regenerate the {document}. Use when the user asks for it "
            f"or agrees to create it. The document is written separately; "
            f"do not write it in the chat."
        ),
        "input_schema": {"type": "object", "properties": {}},
    }


def get_tool_definitions() -> list[dict[str, Any]]:
    """Get tool definitions for the Anthropic Messages API."""
    return [
        {
            "name": "saveRequestSummary",
            "description": (
                "Save the user's request as the Request document once the problem, "
                "purpose and scope are understood. Pass a complete plain-text summary."
            ),
            "input_schema": {
                "type": "object",
                "properties": {
                    "request_summary": {
                        "type": "string",
                        "description": (
                            "Complete summary of the request: title, requester, current "
                            "problem, purpose, in-scope and out-of-scope items, expected benefits"
                        ),
                    },
                },
                "required": ["request_summary"],
            },
        },
        _generation_tool("startAnalysisGeneration", "business analysis document"),
        _generation_tool("startTestGeneration", "test scenarios for the current analysis"),
        _generation_tool(
            "startVisualizationGeneration", "process flow diagram for the current analysis"
        ),
        _generation_tool(
            "startTraceabilityGeneration",
            "requirement-to-test traceability matrix (needs analysis and test scenarios)",
        ),
    ]
