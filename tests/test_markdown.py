"""Tests for heading-based markdown chunking."""

from review_search.documents import extract_markdown_chunks


class TestTitleExtraction:
    """Test H1 title detection."""

    def test_h1_becomes_title(self):
        document = extract_markdown_chunks("/repo/file.md", "# My Document Title\n\nSome content here.", "file.md")
        assert document.title == "My Document Title"

    def test_filename_fallback(self):
        document = extract_markdown_chunks("/repo/myfile.md", "Some content without any headings.", "myfile.md")
        assert document.title == "myfile"

    def test_only_first_five_lines_searched(self):
        content = "Line 1\nLine 2\nLine 3\nLine 4\nLine 5\nLine 6\n# Late H1\n\nContent"
        document = extract_markdown_chunks("/repo/file.md", content, "file.md")
        assert document.title == "file"

    def test_h2_is_not_a_title(self):
        document = extract_markdown_chunks("/repo/notes.md", "## Section\n\nBody", "notes.md")
        assert document.title == "notes"


class TestChunking:
    """Test splitting at H2/H3 headings."""

    def test_split_by_h2(self):
        content = "# Document Title\n\n## Section One\n\nContent for section one.\n\n## Section Two\n\nContent for section two.\n"
        document = extract_markdown_chunks("/repo/file.md", content, "file.md")

        assert [chunk.heading for chunk in document.chunks] == [None, "Section One", "Section Two"]
        assert document.chunks[0].content == "# Document Title"
        assert "Content for section one" in document.chunks[1].content
        assert document.chunks[1].content.startswith("## Section One")
        assert document.chunks[1].start_line == 3
        assert document.chunks[2].start_line == 7

    def test_mixed_h2_and_h3(self):
        content = "# Title\n\n## Main Section\n\nIntro.\n\n### Subsection\n\nDetails.\n"
        document = extract_markdown_chunks("/repo/file.md", content, "file.md")

        assert [chunk.heading for chunk in document.chunks] == [None, "Main Section", "Subsection"]

    def test_headings_inside_code_fences_ignored(self):
        content = "# Title\n\n## Real Section\n\n```markdown\n## Fake Heading Inside Code Block\n```\n\nMore content.\n"
        document = extract_markdown_chunks("/repo/file.md", content, "file.md")

        headings = [chunk.heading for chunk in document.chunks]
        assert "Fake Heading Inside Code Block" not in headings
        real = next(chunk for chunk in document.chunks if chunk.heading == "Real Section")
        assert "Fake Heading Inside Code Block" in real.content

    def test_no_subheadings_gives_single_chunk(self):
        content = "# Document Title\n\nThis is just some content without any sub-headings.\nJust paragraphs.\n"
        document = extract_markdown_chunks("/repo/file.md", content, "file.md")

        assert len(document.chunks) == 1
        assert document.chunks[0].heading is None
        assert "just some content" in document.chunks[0].content
        assert document.chunks[0].start_line == 1

    def test_chunk_metadata(self):
        content = "# Title\n\n## Section\n\nContent here.\n"
        document = extract_markdown_chunks("/repo/docs/file.md", content, "docs/file.md")

        assert all(chunk.original_document_path == "docs/file.md" for chunk in document.chunks)
        assert all(chunk.language == "markdown" for chunk in document.chunks)

    def test_empty_sections_dropped(self):
        content = "## Empty\n\n## Full\n\nBody\n"
        document = extract_markdown_chunks("/repo/file.md", content, "file.md")

        assert [chunk.heading for chunk in document.chunks] == ["Empty", "Full"]
        assert document.chunks[0].content == "## Empty"


class TestEdgeCases:
    """Test empty and invalid input."""

    def test_empty_content(self):
        document = extract_markdown_chunks("/repo/file.md", "", "file.md")
        assert document.chunks == []
        assert document.title is None

    def test_none_content(self):
        document = extract_markdown_chunks("/repo/file.md", None, "file.md")
        assert document.chunks == []
        assert document.title is None
