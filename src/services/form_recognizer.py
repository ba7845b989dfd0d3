import asyncio
from abc import ABC, abstractmethod
from loguru import logger
from azure.ai.documentintelligence import DocumentIntelligenceClient
from azure.ai.documentintelligence.models import DocumentAnalysisFeature
from azure.core.credentials import AzureKeyCredential
from azure.core.exceptions import AzureError
from .ocr.blocks import OcrBlock, Relationship, RecognitionOutput
from ..core.config import settings

SELECTED_TOKEN = ":selected:"
UNSELECTED_TOKEN = ":unselected:"


class RecognitionError(Exception):
    """The recognition engine could not analyze the document (unreachable, rejected input, ...)."""


class RecognitionEngine(ABC):
    name: str = "unknown"

    @abstractmethod
    async def analyze(self, file_bytes: bytes, file_name: str) -> RecognitionOutput:
        """Run recognition over a document and return block-structured output."""


class BlockBuilder:
    """Accumulates OcrBlocks with sequential ids."""

    def __init__(self):
        self.blocks: list[OcrBlock] = []
        self._next_id = 0

    def _new_id(self) -> str:
        self._next_id += 1
        return f"b{self._next_id}"

    def add(self, **fields) -> str:
        block_id = self._new_id()
        self.blocks.append(OcrBlock(id=block_id, **fields))
        return block_id

    def add_words(self, content: str, page: int = 1) -> list[str]:
        """Split text into WORD / SELECTION_ELEMENT children and return their ids."""
        ids = []
        for token in content.split():
            if token == SELECTED_TOKEN:
                ids.append(self.add(block_type="SELECTION_ELEMENT", selection_status="SELECTED", page=page))
            elif token == UNSELECTED_TOKEN:
                ids.append(self.add(block_type="SELECTION_ELEMENT", selection_status="NOT_SELECTED", page=page))
            else:
                ids.append(self.add(block_type="WORD", text=token, page=page))
        return ids

    def add_line(self, text: str, page: int = 1, confidence: float | None = None) -> str:
        return self.add(block_type="LINE", text=text, page=page, confidence=confidence)

    def add_key_value(self, key: str, value: str, page: int = 1, confidence: float | None = None) -> str:
        value_children = self.add_words(value, page)
        value_id = self.add(
            block_type="KEY_VALUE_SET",
            entity_types=("VALUE",),
            relationships=(Relationship(type="CHILD", ids=tuple(value_children)),),
            page=page,
        )
        key_children = self.add_words(key, page)
        return self.add(
            block_type="KEY_VALUE_SET",
            entity_types=("KEY",),
            relationships=(
                Relationship(type="CHILD", ids=tuple(key_children)),
                Relationship(type="VALUE", ids=(value_id,)),
            ),
            page=page,
            confidence=confidence,
        )

    def add_table(self, rows: list[list[str]], page: int = 1) -> str:
        cell_ids = []
        for r, row in enumerate(rows, start=1):
            for c, content in enumerate(row, start=1):
                children = self.add_words(content or "", page)
                cell_ids.append(self.add(
                    block_type="CELL",
                    row_index=r,
                    column_index=c,
                    relationships=(Relationship(type="CHILD", ids=tuple(children)),),
                    page=page,
                ))
        return self.add(
            block_type="TABLE",
            relationships=(Relationship(type="CHILD", ids=tuple(cell_ids)),),
            page=page,
        )


def analyze_result_to_blocks(result) -> list[OcrBlock]:
    """Convert an Azure Document Intelligence AnalyzeResult into OcrBlocks."""
    builder = BlockBuilder()

    for page in getattr(result, "pages", None) or []:
        page_number = getattr(page, "page_number", 1) or 1
        for line in getattr(page, "lines", None) or []:
            if line.content:
                builder.add_line(line.content, page=page_number)

    for pair in getattr(result, "key_value_pairs", None) or []:
        if not pair.key or not pair.key.content or not pair.value or not pair.value.content:
            continue
        builder.add_key_value(pair.key.content, pair.value.content, confidence=getattr(pair, "confidence", None))

    for table in getattr(result, "tables", None) or []:
        rows = [["" for _ in range(table.column_count)] for _ in range(table.row_count)]
        for cell in table.cells or []:
            if cell.row_index < table.row_count and cell.column_index < table.column_count:
                rows[cell.row_index][cell.column_index] = cell.content or ""
        builder.add_table(rows)

    return builder.blocks


class AzureDocumentIntelligenceEngine(RecognitionEngine):
    name = "azure-document-intelligence"

    def __init__(self, endpoint: str, api_key: str, model_id: str = "prebuilt-layout"):
        self.endpoint = endpoint
        self.model_id = model_id
        self.client = DocumentIntelligenceClient(endpoint=endpoint, credential=AzureKeyCredential(api_key))

    def _analyze_sync(self, file_bytes: bytes):
        poller = self.client.begin_analyze_document(
            self.model_id,
            body=file_bytes,
            content_type="application/octet-stream",
            features=[DocumentAnalysisFeature.KEY_VALUE_PAIRS],
        )
        return poller.result()

    async def analyze(self, file_bytes: bytes, file_name: str) -> RecognitionOutput:
        if not file_bytes:
            raise RecognitionError(f"Document '{file_name}' is empty")

        logger.info(f"Analyzing document of size {len(file_bytes)} bytes", file_name=file_name, model=self.model_id)
        try:
            result = await asyncio.to_thread(self._analyze_sync, file_bytes)
        except AzureError as e:
            logger.error(f"Azure DI analysis failed: {str(e)}")
            raise RecognitionError(f"Document recognition failed: {str(e)}") from e

        blocks = analyze_result_to_blocks(result)
        documents = getattr(result, "documents", None) or []
        confidence = documents[0].confidence if documents and getattr(documents[0], "confidence", None) else None

        logger.info("Azure DI analysis complete", blocks=len(blocks), confidence=confidence)
        return RecognitionOutput(provider=self.name, blocks=blocks, confidence=confidence)


class MockRecognitionEngine(RecognitionEngine):
    """Returns a fixed sample tax invoice; used when Azure is not configured."""
    name = "mock"

    async def analyze(self, file_bytes: bytes, file_name: str) -> RecognitionOutput:
        if not file_bytes:
            raise RecognitionError(f"Document '{file_name}' is empty")

        logger.info("Returning mock recognition output", file_name=file_name, file_size_bytes=len(file_bytes))

        builder = BlockBuilder()
        for line in (
            "XYZ SERVICES PTE. LTD.",
            "UEN: 199912345K",
            "GST Reg No: M2-1234567-7",
            "TAX INVOICE",
            "Bill To",
            "ABC TRADING PTE. LTD.",
        ):
            builder.add_line(line, confidence=0.98)

        builder.add_key_value("Invoice No:", "INV-10023", confidence=0.97)
        builder.add_key_value("Invoice Date:", "15/01/2024", confidence=0.96)
        builder.add_key_value("Due Date:", "14 Feb 2024", confidence=0.95)
        builder.add_key_value("Customer UEN:", "201234567A", confidence=0.94)
        builder.add_key_value("Subtotal", "S$ 1,000.00", confidence=0.97)
        builder.add_key_value("GST 9%", "S$ 90.00", confidence=0.96)
        builder.add_key_value("Total", "S$ 1,090.00", confidence=0.97)
        builder.add_table([
            ["Description", "Qty", "Unit Price", "Amount"],
            ["Consulting services", "10", "80.00", "800.00"],
            ["Software licence", "1", "200.00", "200.00"],
            ["Subtotal", "", "", "1,000.00"],
        ])

        return RecognitionOutput(provider=self.name, blocks=builder.blocks, confidence=0.92)


def get_recognition_engine() -> RecognitionEngine:
    # Check if Azure Document Intelligence is configured
    if settings.az_di_endpoint and settings.az_di_api_key:
        logger.info(
            "Using Azure Document Intelligence for recognition",
            endpoint=settings.az_di_endpoint[:50] + "..." if len(settings.az_di_endpoint) > 50 else settings.az_di_endpoint
        )
        return AzureDocumentIntelligenceEngine(settings.az_di_endpoint, settings.az_di_api_key, settings.az_di_model)

    logger.warning(
        "Azure Document Intelligence not configured - using MOCK recognition. "
        "Set AZ_DI_ENDPOINT and AZ_DI_API_KEY to use real extraction."
    )
    return MockRecognitionEngine()
