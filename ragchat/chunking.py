"""
Document Chunking Module

WHY CHUNKING IS NECESSARY:
1. Embeddings work better on focused, bounded pieces of text
2. Only the few most relevant pieces go into the prompt, not whole files

THE STRATEGY: fixed-size sliding windows

    text:     |--------------------------------------------|
    chunk 0:  |==========|
    chunk 1:          |==========|
    chunk 2:                  |==========|
                      ^^^ overlap

- A window of chunk_size characters starts at offset 0
- The next window starts chunk_size - chunk_overlap characters later
- The last window may be shorter than chunk_size

Same input, same windows, same order: retrieval results are reproducible.

EXAMPLE:
    1000 characters, chunk_size=800, chunk_overlap=200
    -> [0, 800) and [600, 1000)
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

# Document loaders
import PyPDF2
from PyPDF2.errors import PdfReadError

from config.settings import get_settings
from ragchat.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Document:
    """A raw source document: where it came from and its full text."""
    source: str
    text: str


@dataclass(frozen=True)
class Chunk:
    """
    A piece of a document.

    - source: which document this came from (shown as a citation)
    - chunk_index: order within the document
    - offset: character position of the window in the document
    """
    text: str
    source: str
    chunk_index: int = 0
    offset: int = 0

    def __repr__(self):
        preview = self.text[:50] + "..." if len(self.text) > 50 else self.text
        return f"Chunk({self.source}, idx={self.chunk_index}, text='{preview}')"


def chunk_text(text: str, chunk_size: int = 800, chunk_overlap: int = 200) -> List[str]:
    """
    Split text into overlapping fixed-size windows.

    Args:
        text: The text to split
        chunk_size: Maximum characters per window
        chunk_overlap: Characters shared by consecutive windows

    Returns:
        List of window strings in document order

    Raises:
        ValueError: unless 0 < chunk_overlap < chunk_size
    """
    if not 0 < chunk_overlap < chunk_size:
        raise ValueError(
            f"chunk_overlap must be between 0 and chunk_size (exclusive). "
            f"Got chunk_size={chunk_size}, chunk_overlap={chunk_overlap}."
        )

    step = chunk_size - chunk_overlap
    return [text[start:start + chunk_size] for start in range(0, len(text), step)]


class SlidingWindowChunker:
    """
    Turn Documents into Chunks using chunk_text.

    Chunk order is document order first, then window order inside each
    document. The embedding store relies on that order to pair vectors
    back with their chunks.
    """

    def __init__(self, chunk_size: int = 800, chunk_overlap: int = 200):
        """
        Initialize the chunker.

        Args:
            chunk_size: Size of each chunk in characters
            chunk_overlap: How many characters to overlap between chunks
        """
        if not 0 < chunk_overlap < chunk_size:
            raise ValueError(
                f"chunk_overlap must be between 0 and chunk_size (exclusive). "
                f"Got chunk_size={chunk_size}, chunk_overlap={chunk_overlap}."
            )
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap

    @property
    def step(self) -> int:
        return self.chunk_size - self.chunk_overlap

    def chunk_document(self, document: Document) -> List[Chunk]:
        """Split one document into Chunk objects."""
        windows = chunk_text(document.text, self.chunk_size, self.chunk_overlap)
        return [
            Chunk(
                text=window,
                source=document.source,
                chunk_index=i,
                offset=i * self.step,
            )
            for i, window in enumerate(windows)
        ]

    def chunk_documents(self, documents: Iterable[Document]) -> List[Chunk]:
        """Split several documents, keeping document order."""
        chunks = []
        for document in documents:
            chunks.extend(self.chunk_document(document))
        return chunks


class DocumentLoader:
    """
    Load documents from various file formats.

    Supported: .txt, .md (read as plain text) and .pdf (via PyPDF2).
    """

    @staticmethod
    def load(file_path: str) -> Document:
        """
        Load a file into a Document whose source is the file name.

        Raises:
            FileNotFoundError: the file does not exist
            ValueError: the file extension is not supported
        """
        path = Path(file_path)

        if not path.exists():
            raise FileNotFoundError(f"File not found: {file_path}")

        suffix = path.suffix.lower()

        if suffix in (".txt", ".md"):
            text = DocumentLoader._load_txt(path)
        elif suffix == ".pdf":
            text = DocumentLoader._load_pdf(path)
        else:
            raise ValueError(f"Unsupported file format: {suffix}")

        return Document(source=path.name, text=text)

    @staticmethod
    def _load_txt(path: Path) -> str:
        """Load a text file."""
        with open(path, "r", encoding="utf-8") as f:
            return f.read()

    @staticmethod
    def _load_pdf(path: Path) -> str:
        """Load a PDF file, one page after another."""
        text_parts = []

        with open(path, "rb") as f:
            reader = PyPDF2.PdfReader(f)
            for page in reader.pages:
                text_parts.append(page.extract_text() or "")

        return "\n\n".join(text_parts)


def load_corpus(
    directory: Optional[str] = None,
    extensions: Sequence[str] = (".txt",)
) -> List[Document]:
    """
    Load every supported file of a directory (non-recursive).

    Args:
        directory: Data directory (defaults to settings.data_dir)
        extensions: File suffixes to pick up

    Returns:
        Documents sorted by file name. A missing or unreadable directory
        is logged and gives an empty corpus, an unreadable file is logged
        and skipped.
    """
    if directory is None:
        directory = get_settings().data_dir

    data_dir = Path(directory)
    suffixes = {ext.lower() for ext in extensions}

    try:
        paths = sorted(
            p for p in data_dir.iterdir()
            if p.is_file() and p.suffix.lower() in suffixes
        )
    except OSError:
        logger.exception("Error loading data files from %s", data_dir)
        return []

    documents = []
    for path in paths:
        try:
            documents.append(DocumentLoader.load(str(path)))
        except (OSError, ValueError, PdfReadError):
            # UnicodeDecodeError is a ValueError
            logger.exception("Skipping unreadable file %s", path)

    logger.info("Loaded %d documents from %s", len(documents), data_dir)
    return documents
