from __future__ import annotations

OCR_PROMPT = (
    "You are an OCR engine. Extract all readable text from the document. "
    "Preserve line breaks. Return plain text only."
)


def structured_prompt(*, file_name: str, mime: str) -> str:
    return (
        "You are a document data extraction system. Extract structured data from the "
        "provided invoice, receipt, or statement.\n\n"
        f'The uploaded file is: "{file_name}" (type: {mime})\n\n'
        "Return a JSON object with this shape:\n\n"
        "{\n"
        '  "fields": [\n'
        '    { "label": "Invoice Number", "value": "INV-0001", "confidence": 0.86 },\n'
        '    { "label": "Invoice Date", "value": "2025-01-31", "confidence": 0.74 },\n'
        '    { "label": "Total", "value": 123.45, "confidence": 0.91 }\n'
        "  ],\n"
        '  "lineItems": [\n'
        '    { "Description": "Item description", "Quantity": 2, "Unit Price": 10.5, '
        '"Total": 21.0 }\n'
        "  ]\n"
        "}\n\n"
        "Use labels as they appear in the document. Use numbers for numeric values and ISO "
        "dates where possible.\n"
        "Include a confidence score for each field between 0 and 1 (0 = low confidence, "
        "1 = high).\n"
        'Only include fields you can read. If you cannot read any fields, return {"fields": []}.\n'
        "Return ONLY valid JSON, no explanation."
    )
