"""
Tests for document and chunk models
"""

import pytest
from pydantic import ValidationError

from sebi_corpus.models.documents import make_chunk_id

from conftest import build_document


@pytest.mark.parametrize("content", ["", "   ", "\n\t  \n"])
def test_blank_content_is_rejected(content):
    with pytest.raises(ValidationError) as exc_info:
        build_document(content=content)

    assert exc_info.value.errors()[0]["loc"] == ("content",)


def test_content_is_kept_verbatim():
    document = build_document(content="  Padded circular text.\n")

    assert document.content == "  Padded circular text.\n"


def test_document_is_frozen():
    document = build_document()

    with pytest.raises(ValidationError):
        document.title = "Changed"


def test_chunk_id_format():
    assert make_chunk_id("sebi-ho-imd-2024-001", 3) == "sebi-ho-imd-2024-001-chunk-3"
