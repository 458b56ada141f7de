import pytest
from enacit4r_filemanager.utils.keys import (KeyDecodeError, dir_key, is_file, join_key,
                                             normalize_file_name, sanitize_file_name, sanitize_path,
                                             strip_processing_prefix, try_unescape_segment,
                                             unescape_segment)


class TestIsFile:
    """Test suite for the file vs folder classification."""

    @pytest.mark.parametrize("segment,expected", [
        ("a.b", True),
        ("report.final.pdf", True),
        (".hidden", True),
        ("noext", False),
        ("a.b/c", False),
        ("folder/file.txt", False),
        ("", False),
    ])
    def test_classification(self, segment, expected):
        assert is_file(segment) is expected

    def test_dotted_folder_is_a_file(self):
        """A folder named with a dot is reported as a file, this is a known limitation."""
        assert is_file("v1.2") is True


class TestUnescape:
    """Test suite for key segment decoding."""

    def test_plain_segment(self):
        assert unescape_segment("docs/readme.md") == "docs/readme.md"

    def test_percent_encoded_segment(self):
        assert unescape_segment("my%20file.txt") == "my file.txt"
        assert unescape_segment("caf%C3%A9.txt") == "café.txt"

    def test_plus_is_a_space(self):
        assert unescape_segment("my+file.txt") == "my file.txt"

    @pytest.mark.parametrize("raw", ["bad%zz.txt", "trailing%", "short%4", "%g0"])
    def test_malformed_escape_raises(self, raw):
        with pytest.raises(KeyDecodeError):
            unescape_segment(raw)

    def test_invalid_utf8_raises(self):
        with pytest.raises(KeyDecodeError):
            unescape_segment("bad%ff%fe.txt")

    def test_lenient_form_skips(self):
        seen = []
        assert try_unescape_segment("bad%zz.txt", lambda raw, e: seen.append(raw)) is None
        assert seen == ["bad%zz.txt"]

    def test_lenient_form_decodes(self):
        assert try_unescape_segment("a%2Fb.txt") == "a/b.txt"


class TestKeys:
    """Test suite for key composition helpers."""

    def test_strip_processing_prefix(self):
        assert strip_processing_prefix("backend/docs/a.txt", "backend") == "docs/a.txt"
        assert strip_processing_prefix("backend/docs/", "backend/") == "docs"
        assert strip_processing_prefix("backend/", "backend") == ""
        assert strip_processing_prefix("backend", "backend") == ""

    def test_strip_processing_prefix_other_root(self):
        assert strip_processing_prefix("backendx/a.txt", "backend") == "backendx/a.txt"

    def test_strip_processing_prefix_without_prefix(self):
        assert strip_processing_prefix("docs/", "") == "docs"

    def test_join_key(self):
        assert join_key("backend", "docs", "a.txt") == "backend/docs/a.txt"
        assert join_key("", "docs/", "/a.txt") == "docs/a.txt"
        assert join_key("backend", "") == "backend"

    def test_dir_key(self):
        assert dir_key("backend/docs") == "backend/docs/"
        assert dir_key("backend/docs/") == "backend/docs/"
        assert dir_key("") == ""


class TestNormalizeFileName:
    """Test suite for uploaded file name normalization."""

    def test_spaces_become_underscores(self):
        assert normalize_file_name("my file name.txt") == "my_file_name.txt"

    def test_accents_are_removed(self):
        assert normalize_file_name("résumé.pdf") == "resume.pdf"
        assert normalize_file_name("Ångström.txt") == "Angstrom.txt"

    def test_plain_name_unchanged(self):
        assert normalize_file_name("report.pdf") == "report.pdf"


class TestSanitizePath:
    """Test suite for sanitize_path."""

    def test_simple_path(self):
        assert sanitize_path("folder/file.txt") == "folder/file.txt"

    def test_path_with_spaces(self):
        assert sanitize_path("my folder/my file.txt") == "my folder/my file.txt"

    def test_filename_with_consecutive_dots(self):
        """Test that filenames with consecutive dots are allowed."""
        assert sanitize_path("folder/file..txt") == "folder/file..txt"
        assert sanitize_path("folder/..config") == "folder/..config"

    def test_path_with_all_special_chars(self):
        assert sanitize_path("my-folder_v2/file(1)[draft]:backup.txt") == "my-folder_v2/file(1)[draft]:backup.txt"

    def test_leading_slashes_removal(self):
        assert sanitize_path("/folder/file.txt") == "folder/file.txt"
        assert sanitize_path("///folder/file.txt") == "folder/file.txt"

    def test_newline_and_carriage_return_removal(self):
        assert sanitize_path("folder/file\r\n.txt") == "folder/file.txt"

    @pytest.mark.parametrize("path", ["folder/../etc/passwd", "../etc/passwd", "folder/..", ".."])
    def test_directory_traversal_raises_error(self, path):
        with pytest.raises(ValueError) as exc_info:
            sanitize_path(path)
        assert "Invalid path: '..' not allowed" in str(exc_info.value)

    @pytest.mark.parametrize("path", ["folder/*.txt", "folder/file?.txt", "folder/file|.txt",
                                      "folder/file<.txt", 'folder/file".txt', "folder\\file.txt"])
    def test_forbidden_character_raises_error(self, path):
        with pytest.raises(ValueError) as exc_info:
            sanitize_path(path)
        assert "Invalid path: contains forbidden characters" in str(exc_info.value)

    def test_empty_path(self):
        assert sanitize_path("") == ""

    def test_none_path_raises_error(self):
        with pytest.raises(ValueError) as exc_info:
            sanitize_path(None)
        assert "Invalid path: path cannot be None" in str(exc_info.value)


class TestSanitizeFileName:
    """Test suite for sanitize_file_name."""

    def test_simple_file_name(self):
        assert sanitize_file_name("my file.txt") == "my file.txt"

    def test_file_name_with_path_separator_raises_error(self):
        with pytest.raises(ValueError) as exc_info:
            sanitize_file_name("folder/file.txt")
        assert "Invalid file name: path separators not allowed" in str(exc_info.value)

    def test_forbidden_character_raises_error(self):
        with pytest.raises(ValueError) as exc_info:
            sanitize_file_name("file*.txt")
        assert "Invalid file name: contains forbidden characters" in str(exc_info.value)

    def test_none_file_name_raises_error(self):
        with pytest.raises(ValueError) as exc_info:
            sanitize_file_name(None)
        assert "Invalid file name: file name cannot be None" in str(exc_info.value)
