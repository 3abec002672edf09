"""Position conversion and light reshaping of analyzer results.

The tool surface uses 1-based lines and 0-based characters; the analyzer
uses 0-based for both. Characters are passed through untouched.
"""

from __future__ import annotations

from pathlib import Path

from gopls_mcp.security import workspace_relative

SYMBOL_KIND_NAMES = {
    1: "file",
    2: "module",
    3: "namespace",
    4: "package",
    5: "class",
    6: "method",
    7: "property",
    8: "field",
    9: "constructor",
    10: "enum",
    11: "interface",
    12: "function",
    13: "variable",
    14: "constant",
    15: "string",
    16: "number",
    17: "boolean",
    18: "array",
    19: "object",
    20: "key",
    21: "null",
    22: "enum_member",
    23: "struct",
    24: "event",
    25: "operator",
    26: "type_parameter",
}

SEVERITY_NAMES = {1: "error", 2: "warning", 3: "information", 4: "hint"}


def to_lsp_line(line: int) -> int:
    """Convert a 1-based tool line to a 0-based analyzer line."""
    return max(line - 1, 0)


def from_lsp_line(line: int) -> int:
    return line + 1


def lsp_position(line: int, character: int) -> dict[str, int]:
    return {"line": to_lsp_line(line), "character": character}


def _int(value: object, default: int = 0) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    return default


def _str(value: object) -> str:
    return value if isinstance(value, str) else ""


def _markup_text(value: object) -> str:
    """Flatten a string or MarkupContent into plain text."""
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        return _str(value.get("value"))
    return ""


def parse_position(payload: object) -> dict[str, int]:
    if not isinstance(payload, dict):
        return {"line": 1, "character": 0}
    return {
        "line": from_lsp_line(_int(payload.get("line"))),
        "character": _int(payload.get("character")),
    }


def parse_range(payload: object) -> dict[str, dict[str, int]]:
    if not isinstance(payload, dict):
        payload = {}
    return {
        "start": parse_position(payload.get("start")),
        "end": parse_position(payload.get("end")),
    }


def _location(uri: str, range_payload: object, workspace_root: Path) -> dict[str, object]:
    rng = parse_range(range_payload)
    return {
        "uri": uri,
        "path": workspace_relative(workspace_root, uri),
        "line": rng["start"]["line"],
        "character": rng["start"]["character"],
        "end_line": rng["end"]["line"],
        "end_character": rng["end"]["character"],
    }


def parse_location(payload: object, workspace_root: Path) -> dict[str, object] | None:
    """Accept a Location or a LocationLink."""
    if not isinstance(payload, dict):
        return None
    if "targetUri" in payload:
        target_range = payload.get("targetSelectionRange") or payload.get("targetRange")
        return _location(_str(payload.get("targetUri")), target_range, workspace_root)
    return _location(_str(payload.get("uri")), payload.get("range"), workspace_root)


def parse_locations(result: object, workspace_root: Path) -> list[dict[str, object]]:
    if result is None:
        return []
    items = result if isinstance(result, list) else [result]
    locations: list[dict[str, object]] = []
    for item in items:
        location = parse_location(item, workspace_root)
        if location is not None:
            locations.append(location)
    return locations


def parse_hover_contents(contents: object) -> list[str]:
    """Accept a string, a MarkupContent/MarkedString, or a list of them."""
    if isinstance(contents, str):
        return [contents]
    if isinstance(contents, dict):
        value = contents.get("value")
        return [value] if isinstance(value, str) else []
    if isinstance(contents, list):
        output: list[str] = []
        for item in contents:
            if isinstance(item, (str, dict)):
                output.extend(parse_hover_contents(item))
        return output
    return []


def parse_hover(result: object) -> dict[str, object]:
    if not isinstance(result, dict):
        return {"contents": [], "has_range": False, "range": None}
    range_payload = result.get("range")
    has_range = isinstance(range_payload, dict)
    return {
        "contents": parse_hover_contents(result.get("contents")),
        "has_range": has_range,
        "range": parse_range(range_payload) if has_range else None,
    }


def _symbol_kind(payload: dict[str, object]) -> tuple[int, str]:
    kind = _int(payload.get("kind"))
    return kind, SYMBOL_KIND_NAMES.get(kind, "unknown")


def parse_document_symbol(payload: dict[str, object]) -> dict[str, object]:
    kind, kind_name = _symbol_kind(payload)
    range_payload = payload.get("range")
    location = payload.get("location")
    if range_payload is None and isinstance(location, dict):
        range_payload = location.get("range")
    children = payload.get("children")
    return {
        "name": _str(payload.get("name")),
        "detail": _str(payload.get("detail")),
        "kind": kind,
        "kind_name": kind_name,
        "range": parse_range(range_payload),
        "selection_range": parse_range(payload.get("selectionRange") or range_payload),
        "children": [
            parse_document_symbol(child)
            for child in (children if isinstance(children, list) else [])
            if isinstance(child, dict)
        ],
    }


def parse_document_symbols(result: object) -> list[dict[str, object]]:
    if not isinstance(result, list):
        return []
    return [parse_document_symbol(item) for item in result if isinstance(item, dict)]


def parse_workspace_symbols(result: object, workspace_root: Path) -> list[dict[str, object]]:
    if not isinstance(result, list):
        return []
    symbols: list[dict[str, object]] = []
    for item in result:
        if not isinstance(item, dict):
            continue
        kind, kind_name = _symbol_kind(item)
        symbols.append(
            {
                "name": _str(item.get("name")),
                "kind": kind,
                "kind_name": kind_name,
                "container_name": _str(item.get("containerName")),
                "location": parse_location(item.get("location"), workspace_root),
            }
        )
    return symbols


def parse_diagnostic(payload: dict[str, object], workspace_root: Path) -> dict[str, object]:
    severity = _int(payload.get("severity"))
    diagnostic: dict[str, object] = {
        "range": parse_range(payload.get("range")),
        "severity": severity,
        "severity_name": SEVERITY_NAMES.get(severity, "unknown"),
        "source": _str(payload.get("source")),
        "message": _str(payload.get("message")),
    }
    code = payload.get("code")
    if isinstance(code, (str, int)) and not isinstance(code, bool):
        diagnostic["code"] = str(code)
    related = payload.get("relatedInformation")
    if isinstance(related, list):
        diagnostic["related"] = [
            {
                "location": parse_location(item.get("location"), workspace_root),
                "message": _str(item.get("message")),
            }
            for item in related
            if isinstance(item, dict)
        ]
    return diagnostic


def parse_diagnostics(items: object, workspace_root: Path) -> list[dict[str, object]]:
    if isinstance(items, dict):
        # Pull-mode DocumentDiagnosticReport.
        items = items.get("items")
    if not isinstance(items, list):
        return []
    return [parse_diagnostic(item, workspace_root) for item in items if isinstance(item, dict)]


def parse_completion_item(payload: dict[str, object]) -> dict[str, object]:
    return {
        "label": _str(payload.get("label")),
        "kind": _int(payload.get("kind")),
        "detail": _str(payload.get("detail")),
        "documentation": _markup_text(payload.get("documentation")),
        "insert_text": _str(payload.get("insertText")),
        "insert_text_format": _int(payload.get("insertTextFormat")),
        "sort_text": _str(payload.get("sortText")),
        "filter_text": _str(payload.get("filterText")),
    }


def parse_completions(result: object) -> dict[str, object]:
    """Accept a CompletionList or a bare CompletionItem list."""
    is_incomplete = False
    items: object = result
    if isinstance(result, dict):
        is_incomplete = bool(result.get("isIncomplete", False))
        items = result.get("items")
    if not isinstance(items, list):
        items = []
    return {
        "is_incomplete": is_incomplete,
        "items": [parse_completion_item(item) for item in items if isinstance(item, dict)],
    }


def _parameter_label(label: object, signature_label: str) -> str:
    if isinstance(label, list) and len(label) == 2:
        start, end = _int(label[0]), _int(label[1])
        return signature_label[start:end]
    return _str(label)


def parse_signature_help(result: object) -> dict[str, object]:
    if not isinstance(result, dict):
        return {"signatures": [], "active_signature": 0, "active_parameter": 0}
    signatures: list[dict[str, object]] = []
    raw_signatures = result.get("signatures")
    for item in raw_signatures if isinstance(raw_signatures, list) else []:
        if not isinstance(item, dict):
            continue
        label = _str(item.get("label"))
        raw_parameters = item.get("parameters")
        signatures.append(
            {
                "label": label,
                "documentation": _markup_text(item.get("documentation")),
                "parameters": [
                    {
                        "label": _parameter_label(parameter.get("label"), label),
                        "documentation": _markup_text(parameter.get("documentation")),
                    }
                    for parameter in (raw_parameters if isinstance(raw_parameters, list) else [])
                    if isinstance(parameter, dict)
                ],
            }
        )
    return {
        "signatures": signatures,
        "active_signature": _int(result.get("activeSignature")),
        "active_parameter": _int(result.get("activeParameter")),
    }


def parse_text_edits(result: object) -> list[dict[str, object]]:
    if not isinstance(result, list):
        return []
    return [
        {"range": parse_range(item.get("range")), "new_text": _str(item.get("newText"))}
        for item in result
        if isinstance(item, dict)
    ]


def code_action_edits(result: object, uri: str) -> list[dict[str, object]]:
    """Return the edits the first code action applies to uri."""
    if not isinstance(result, list):
        return []
    for action in result:
        if not isinstance(action, dict):
            continue
        edit = action.get("edit")
        if not isinstance(edit, dict):
            continue
        changes = edit.get("changes")
        if isinstance(changes, dict) and uri in changes:
            return parse_text_edits(changes[uri])
        document_changes = edit.get("documentChanges")
        if isinstance(document_changes, list):
            for change in document_changes:
                if not isinstance(change, dict):
                    continue
                document = change.get("textDocument")
                if isinstance(document, dict) and document.get("uri") == uri:
                    return parse_text_edits(change.get("edits"))
    return []


def _hint_label(label: object) -> str:
    if isinstance(label, list):
        return "".join(_str(part.get("value")) for part in label if isinstance(part, dict))
    return _str(label)


def parse_inlay_hints(result: object) -> list[dict[str, object]]:
    if not isinstance(result, list):
        return []
    hints: list[dict[str, object]] = []
    for item in result:
        if not isinstance(item, dict):
            continue
        position = parse_position(item.get("position"))
        hints.append(
            {
                "line": position["line"],
                "character": position["character"],
                "label": _hint_label(item.get("label")),
                "kind": _int(item.get("kind")),
                "tooltip": _markup_text(item.get("tooltip")),
            }
        )
    return hints
