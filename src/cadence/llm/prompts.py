from __future__ import annotations

TABLE_EXTRACTION_SYSTEM = (
    "You are a data extraction assistant. You turn documents into clean tabular data "
    "and always answer with a single JSON object."
)

TABLE_EXTRACTION_PROMPT = """
Extract the main table of recurring jobs or tasks from the document below.
Return strict JSON with keys:
- description: string (one sentence describing the table)
- columns: string[] (column headers, in document order)
- rows: array of objects keyed by the exact column headers; use "" for empty cells

Only include rows that describe a job. Do not invent columns or values.
If there is no table, return {{"description": "", "columns": [], "rows": []}}.

File name: {filename}
Document:
{document_text}
""".strip()

TEXT_IMPROVEMENT_SYSTEM = (
    "You are a professional writing assistant for supply chain and compliance teams. "
    "Return only the rewritten text, without preamble or quotes."
)

TEXT_IMPROVEMENT_PROMPTS: dict[str, str] = {
    "improve": (
        "Improve the following text for clarity, grammar and professional tone. "
        "Keep the meaning and any figures unchanged.\n\n{text}"
    ),
    "concise": (
        "Rewrite the following text to be shorter and more direct. "
        "Keep every fact and figure.\n\n{text}"
    ),
    "formal": (
        "Rewrite the following text in a formal tone suitable for an audit record.\n\n{text}"
    ),
}
