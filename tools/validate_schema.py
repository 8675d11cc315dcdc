#!/usr/bin/env python3
"""
loudscan Outcome Schema Validation Tool

Validates outcome documents printed by `loudscan scan` against the v1 JSON
schema. Lives outside the runtime package so the scanner itself never
depends on jsonschema.

Usage:
    python tools/validate_schema.py <json_file> [--schema scan_outcome]

The input file may hold a single outcome object, a JSON array of outcomes,
or the concatenated documents exactly as `loudscan scan` prints them.

Example:
    loudscan scan clip.mp4 > outcome.json
    python tools/validate_schema.py outcome.json
"""

import argparse
import json
import sys
from pathlib import Path

try:
    import jsonschema
except ImportError:
    sys.exit("Error: jsonschema package required. Install with: pip install 'loudscan[test]'")


SCHEMA_DIR = Path(__file__).parent.parent / "schemas"

SCHEMA_FILES = {
    "scan_outcome": "scan_outcome.schema.json",
}


def load_schema(schema_name: str) -> dict:
    """Load a schema by name."""
    if schema_name not in SCHEMA_FILES:
        raise ValueError(f"Unknown schema: {schema_name}. Valid: {list(SCHEMA_FILES.keys())}")

    schema_path = SCHEMA_DIR / SCHEMA_FILES[schema_name]
    with open(schema_path, "r") as f:
        return json.load(f)


def validate_document(document: dict, schema: dict) -> list[str]:
    """
    Validate a document against a schema.

    Returns:
        List of error messages (empty if valid).
    """
    validator = jsonschema.Draft7Validator(schema, format_checker=jsonschema.FormatChecker())
    errors = []
    for error in validator.iter_errors(document):
        path = ".".join(str(p) for p in error.absolute_path) or "(root)"
        errors.append(f"{path}: {error.message}")
    return errors


def split_documents(text: str) -> list:
    """Decode one or more concatenated JSON documents."""
    decoder = json.JSONDecoder()
    documents = []
    index = 0
    while True:
        while index < len(text) and text[index].isspace():
            index += 1
        if index >= len(text):
            break
        document, index = decoder.raw_decode(text, index)
        if isinstance(document, list):
            documents.extend(document)
        else:
            documents.append(document)
    return documents


def main():
    parser = argparse.ArgumentParser(
        description="Validate loudscan outcome documents against the v1 schema"
    )
    parser.add_argument(
        "json_file",
        type=Path,
        help="Path to a file holding one or more outcome documents",
    )
    parser.add_argument(
        "--schema",
        choices=list(SCHEMA_FILES.keys()),
        default="scan_outcome",
        help="Schema to validate against (default: scan_outcome)",
    )

    args = parser.parse_args()

    try:
        schema = load_schema(args.schema)
    except FileNotFoundError:
        sys.exit(f"Error: Schema file not found: {SCHEMA_DIR / SCHEMA_FILES[args.schema]}")

    try:
        documents = split_documents(args.json_file.read_text())
    except FileNotFoundError:
        sys.exit(f"Error: File not found: {args.json_file}")
    except json.JSONDecodeError as e:
        sys.exit(f"Error: Invalid JSON: {e}")

    if not documents:
        sys.exit("Error: No documents found")

    failed = 0
    for number, document in enumerate(documents, start=1):
        errors = validate_document(document, schema)
        if errors:
            failed += 1
            print(f"INVALID document {number}: {len(errors)} error(s) found:")
            for error in errors:
                print(f"  - {error}")

    if failed:
        sys.exit(1)
    print(f"VALID: {len(documents)} document(s) conform to {args.schema} schema.")
    sys.exit(0)


if __name__ == "__main__":
    main()
