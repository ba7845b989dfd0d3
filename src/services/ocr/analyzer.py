"""
Document analyzer: turns flat OCR blocks into labelled fields and tables.

Pairs KEY blocks with their VALUE blocks through relationship edges and
rebuilds tables from the row/column indexes of their CELL children. Broken
or missing edges only shrink the output; analysis never raises.
"""

from typing import Any, Iterable
from loguru import logger
from pydantic import BaseModel, Field, ValidationError
from .blocks import OcrBlock

SELECTED_MARK = "X "


class AnalyzedDocument(BaseModel):
    key_values: dict[str, str] = Field(default_factory=dict)
    tables: list[list[list[str]]] = Field(default_factory=list)
    lines: list[str] = Field(default_factory=list)
    confidence: float | None = None  # mean block confidence (0-1), when the engine reports one


def _coerce_blocks(raw_blocks: Iterable[OcrBlock | dict[str, Any]]) -> list[OcrBlock]:
    blocks: list[OcrBlock] = []
    for raw in raw_blocks or []:
        if isinstance(raw, OcrBlock):
            blocks.append(raw)
            continue
        try:
            blocks.append(OcrBlock.model_validate(raw))
        except ValidationError as e:
            logger.warning("Skipping malformed OCR block", error_count=e.error_count())
    return blocks


def get_block_text(block: OcrBlock, block_map: dict[str, OcrBlock]) -> str:
    """Text of a block: its own text if set, else the concatenation of its WORD/selection children."""
    if block.text:
        return block.text.strip()

    parts: list[str] = []
    for child_id in block.related_ids("CHILD"):
        child = block_map.get(child_id)
        if child is None:
            continue
        if child.block_type == "WORD" and child.text:
            parts.append(child.text + " ")
        elif child.block_type == "SELECTION_ELEMENT" and child.selection_status == "SELECTED":
            parts.append(SELECTED_MARK)
    return "".join(parts).strip()


def extract_key_values(blocks: list[OcrBlock], block_map: dict[str, OcrBlock]) -> dict[str, str]:
    key_values: dict[str, str] = {}
    for block in blocks:
        if block.block_type != "KEY_VALUE_SET" or "KEY" not in block.entity_types:
            continue

        value_ids = block.related_ids("VALUE")
        if not value_ids:
            continue
        value_block = block_map.get(value_ids[0])
        if value_block is None:
            logger.debug("Key block references a missing value block", key_id=block.id, value_id=value_ids[0])
            continue

        label = get_block_text(block, block_map).lower().strip()
        value = get_block_text(value_block, block_map).strip()
        if label and value:
            key_values[label] = value
    return key_values


def extract_tables(blocks: list[OcrBlock], block_map: dict[str, OcrBlock]) -> list[list[list[str]]]:
    tables: list[list[list[str]]] = []
    for table_block in (b for b in blocks if b.block_type == "TABLE"):
        cells: dict[tuple[int, int], OcrBlock] = {}
        for cell_id in table_block.related_ids("CHILD"):
            cell = block_map.get(cell_id)
            if cell is None or cell.block_type != "CELL":
                continue
            if not cell.row_index or not cell.column_index:
                continue
            cells[(cell.row_index, cell.column_index)] = cell

        if not cells:
            continue

        max_row = max(row for row, _ in cells)
        max_col = max(col for _, col in cells)
        grid = [
            [
                get_block_text(cells[(row, col)], block_map) if (row, col) in cells else ""
                for col in range(1, max_col + 1)
            ]
            for row in range(1, max_row + 1)
        ]

        # A usable table needs a header row plus at least one data row
        if len(grid) < 2:
            continue
        tables.append(grid)
    return tables


def _mean_confidence(blocks: list[OcrBlock]) -> float | None:
    scores = [b.confidence for b in blocks if b.confidence is not None]
    if not scores:
        return None
    # Textract reports 0-100, Azure 0-1
    normalised = [s / 100.0 if s > 1.0 else s for s in scores]
    return sum(normalised) / len(normalised)


def analyze_blocks(raw_blocks: Iterable[OcrBlock | dict[str, Any]]) -> AnalyzedDocument:
    blocks = _coerce_blocks(raw_blocks)
    block_map = {block.id: block for block in blocks}

    lines = [get_block_text(b, block_map) for b in blocks if b.block_type == "LINE"]

    document = AnalyzedDocument(
        key_values=extract_key_values(blocks, block_map),
        tables=extract_tables(blocks, block_map),
        lines=[line for line in lines if line],
        confidence=_mean_confidence(blocks),
    )

    logger.debug(
        "Analyzed OCR blocks",
        blocks=len(blocks),
        key_values=len(document.key_values),
        tables=len(document.tables),
        lines=len(document.lines),
    )
    return document
