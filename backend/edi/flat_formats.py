"""
Generic Document Formats — CSV / XML / JSON

Partners that do not speak X12 exchange flat row sets:

    CSV   header row + one record per line
    XML   <Document><Row><Field>…</Field></Row>…</Document>
          (any root; each child element of the root is a row)
    JSON  [{…}, …]  |  {"rows": [...]}  |  {"data": [...]}  |  {…}
          written as {"data": [...]}

Each parser returns a list of flat dicts; each generator accepts one.
"""

from __future__ import annotations

import csv
import io
import json
import re
from typing import Any
from xml.parsers.expat import ExpatError

import xmltodict

from core.errors import FormatError
from edi.x12_parser import X12Parser

GENERIC_FORMATS = ("csv", "xml", "json")

_XML_NAME_INVALID = re.compile(r"[^A-Za-z0-9_.-]")


class FlatFileParser:
    """Parse and generate the non-X12 document formats."""

    # ── CSV ──────────────────────────────────────────────────────────────

    @staticmethod
    def parse_csv(content: str, delimiter: str = ",") -> list[dict[str, Any]]:
        reader = csv.DictReader(io.StringIO(content.lstrip("\ufeff")), delimiter=delimiter)
        records = []
        try:
            for row in reader:
                record = {
                    key.strip(): ("" if value is None else value)
                    for key, value in row.items()
                    if key is not None
                }
                if any(str(v).strip() for v in record.values()):
                    records.append(record)
        except csv.Error as exc:
            raise FormatError(f"Invalid CSV at line {reader.line_num}: {exc}") from exc
        return records

    @staticmethod
    def generate_csv(rows: list[dict[str, Any]], delimiter: str = ",") -> str:
        fieldnames: list[str] = []
        for row in rows:
            for key in row:
                if key not in fieldnames:
                    fieldnames.append(key)

        buffer = io.StringIO()
        writer = csv.DictWriter(buffer, fieldnames=fieldnames, delimiter=delimiter, lineterminator="\n")
        writer.writeheader()
        for row in rows:
            writer.writerow({key: _scalar(value) for key, value in row.items()})
        return buffer.getvalue()

    # ── XML ──────────────────────────────────────────────────────────────

    @staticmethod
    def parse_xml(content: str) -> list[dict[str, Any]]:
        try:
            document = xmltodict.parse(content)
        except ExpatError as exc:
            raise FormatError(f"Invalid XML: {exc}") from exc

        root = next(iter(document.values()), None)
        if not isinstance(root, dict):
            return []

        records = []
        for key, value in root.items():
            if key.startswith("@") or key == "#text":
                continue
            for item in value if isinstance(value, list) else [value]:
                if isinstance(item, dict):
                    records.append(_clean_xml_record(item))
        return records

    @staticmethod
    def generate_xml(rows: list[dict[str, Any]], root_tag: str = "Document", row_tag: str = "Row") -> str:
        body = [{_xml_name(key): _scalar(value) for key, value in row.items()} for row in rows]
        return xmltodict.unparse({root_tag: {row_tag: body} if body else None}, pretty=True, indent="  ")

    # ── JSON ─────────────────────────────────────────────────────────────

    @staticmethod
    def parse_json(content: str) -> list[dict[str, Any]]:
        try:
            payload = json.loads(content)
        except json.JSONDecodeError as exc:
            raise FormatError(f"Invalid JSON: {exc}") from exc

        if isinstance(payload, dict):
            for key in ("rows", "data"):
                if isinstance(payload.get(key), list):
                    payload = payload[key]
                    break
            else:
                return [payload]
        if not isinstance(payload, list):
            raise FormatError("JSON document must be an object or an array of objects")
        return [item for item in payload if isinstance(item, dict)]

    @staticmethod
    def generate_json(rows: list[dict[str, Any]]) -> str:
        return json.dumps({"data": rows}, indent=2, default=str)


def parse_document(content: str, fmt: str) -> list[dict[str, Any]]:
    if fmt == "csv":
        return FlatFileParser.parse_csv(content)
    if fmt == "xml":
        return FlatFileParser.parse_xml(content)
    if fmt == "json":
        return FlatFileParser.parse_json(content)
    raise FormatError(f"Unsupported generic format: {fmt}")


def generate_document(rows: list[dict[str, Any]], fmt: str) -> str:
    if fmt == "csv":
        return FlatFileParser.generate_csv(rows)
    if fmt == "xml":
        return FlatFileParser.generate_xml(rows)
    if fmt == "json":
        return FlatFileParser.generate_json(rows)
    raise FormatError(f"Unsupported generic format: {fmt}")


# ── Inference for files that arrive without metadata ─────────────────────

EXTENSION_FORMATS = {
    ".csv": "csv",
    ".xml": "xml",
    ".json": "json",
    ".edi": "x12",
    ".x12": "x12",
}

CONTENT_TYPES = {
    "x12": "application/edi-x12",
    "csv": "text/csv",
    "xml": "application/xml",
    "json": "application/json",
}

FILE_EXTENSIONS = {"x12": "edi", "csv": "csv", "xml": "xml", "json": "json"}

_DOC_TYPE_TOKEN = re.compile(r"(?<!\d)(850|810|856|997)(?!\d)")


def infer_format(filename: str | None, default_format: str, content: str = "") -> str:
    """Format from the file extension, then an ISA prefix, then the partner default."""
    if filename:
        _, dot, ext = filename.rpartition(".")
        fmt = EXTENSION_FORMATS.get(f".{ext.lower()}") if dot else None
        if fmt:
            return fmt
    if content.lstrip("\ufeff").lstrip().startswith("ISA"):
        return "x12"
    return default_format


def infer_document_type(content: str, fmt: str, filename: str | None = None) -> str:
    """ST01 for X12, else a doc-type token in the filename, else 850."""
    if fmt == "x12":
        detected = X12Parser.detect_transaction_type(content)
        if detected in ("850", "855", "810", "856", "997"):
            return detected
    match = _DOC_TYPE_TOKEN.search(filename or "")
    return match.group(1) if match else "850"


def _clean_xml_record(record: dict[str, Any]) -> dict[str, Any]:
    """Drop attributes / namespaces; elements with text + attributes collapse to text."""
    cleaned: dict[str, Any] = {}
    for key, value in record.items():
        if key.startswith("@") or key == "#text":
            continue
        clean_key = key.split(":")[-1]
        if value is None:
            cleaned[clean_key] = ""
        elif isinstance(value, dict):
            cleaned[clean_key] = value["#text"] if "#text" in value else _clean_xml_record(value)
        else:
            cleaned[clean_key] = value
    return cleaned


def _xml_name(key: str) -> str:
    name = _XML_NAME_INVALID.sub("_", str(key)) or "_"
    return f"_{name}" if name[0].isdigit() or name[0] in ".-" else name


def _scalar(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)
