"""
Build the provider-agnostic chat messages for one analysis run.

Pure transformation: no validation, no I/O. An empty table still produces a
well-formed request; the provider deals with degenerate input.
"""

import json
from typing import List

from .schemas import Message, ProviderRequest, Row

SYSTEM_PROMPT = (
    "You are an AI assistant for analyzing tabular data. "
    "Respond strictly with a single JSON object. "
    "Do not add explanations, markdown, or code fences around it."
)

OUTPUT_SCHEMA = """{
  "analysis": "string",
  "charts": [
    {
      "title": "string",
      "type": "bar" | "line" | "pie",
      "labels": [...],
      "values": [...],
      "colors": ["#HEX", "#HEX", ...]
    }
  ]
}"""

USER_PROMPT_TEMPLATE = """Analyze the table below (a JSON array of row objects).
Return strictly JSON in this format:

{schema}

Important:
- "analysis" is a plain-text summary of the findings.
- "colors" must be an array of HEX color codes, one per value.
- The palette should be visually harmonious (pastel / neon / ocean / warm).
- The length of "colors" must equal the length of "values".

Data:
{data}
"""


def serialize_rows(rows: List[Row]) -> str:
    return json.dumps(list(rows), indent=2, ensure_ascii=False, default=str)


def build_messages(rows: List[Row]) -> List[Message]:
    return [
        Message(role="system", content=SYSTEM_PROMPT),
        Message(
            role="user",
            content=USER_PROMPT_TEMPLATE.format(schema=OUTPUT_SCHEMA, data=serialize_rows(rows)),
        ),
    ]


def build_request(rows: List[Row], provider: str) -> ProviderRequest:
    return ProviderRequest(provider=provider, messages=tuple(build_messages(rows)))
