"""
Engine-neutral OCR block model.

A recognition call returns a flat list of blocks. Structure (words in a line,
key linked to value, cells in a table) is expressed through relationship
edges that reference other block ids.
"""

from typing import Literal
from pydantic import BaseModel, Field

BlockType = Literal["PAGE", "LINE", "WORD", "KEY_VALUE_SET", "TABLE", "CELL", "SELECTION_ELEMENT"]
RelationshipType = Literal["CHILD", "VALUE"]


class Relationship(BaseModel):
    model_config = {"frozen": True}

    type: RelationshipType
    ids: tuple[str, ...] = ()


class BoundingBox(BaseModel):
    model_config = {"frozen": True}

    top: float = 0.0
    left: float = 0.0
    width: float = 0.0
    height: float = 0.0


class OcrBlock(BaseModel):
    model_config = {"frozen": True}

    id: str
    block_type: BlockType
    text: str | None = None
    entity_types: tuple[str, ...] = ()  # "KEY" or "VALUE" for KEY_VALUE_SET blocks
    relationships: tuple[Relationship, ...] = ()
    row_index: int | None = None  # 1-based, CELL blocks only
    column_index: int | None = None  # 1-based, CELL blocks only
    selection_status: Literal["SELECTED", "NOT_SELECTED"] | None = None
    confidence: float | None = None
    geometry: BoundingBox | None = None
    page: int = 1

    def related_ids(self, relationship_type: RelationshipType) -> list[str]:
        ids: list[str] = []
        for relationship in self.relationships:
            if relationship.type == relationship_type:
                ids.extend(relationship.ids)
        return ids


class RecognitionOutput(BaseModel):
    """Raw output of one recognition call."""
    provider: str
    blocks: list[OcrBlock] = Field(default_factory=list)
    confidence: float | None = None  # engine-reported document confidence (0-1), if any
