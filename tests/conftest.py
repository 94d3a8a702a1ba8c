import os
import shutil
import tempfile

import pytest

from site_localizer.translation_client import TranslationError, split_surrounding_whitespace


class FakeTranslator:
    """
    Stand-in for TranslationClient: prefixes the trimmed text with the upper-cased
    language code, keeps surrounding whitespace, and records every call.
    """

    def __init__(self, failing=()):
        self.calls = []
        self.failing = set(failing)

    async def translate(self, text, target_language):
        self.calls.append((text, target_language))
        if text in self.failing:
            raise TranslationError(f"service unavailable for {text!r}")
        leading, trailing = split_surrounding_whitespace(text)
        return f"{leading}{target_language.upper()}:{text.strip()}{trailing}"


@pytest.fixture
def fake_translator():
    return FakeTranslator()


@pytest.fixture
def translator_factory():
    return FakeTranslator


@pytest.fixture
def temp_dir():
    """A scratch directory removed after the test."""
    path = tempfile.mkdtemp(prefix='site_localizer_test_')
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def write_file(temp_dir):
    """Write ``content`` to ``relative_path`` under the scratch directory and return the absolute path."""
    def _write(relative_path, content, mode='w'):
        path = os.path.join(temp_dir, relative_path)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        if 'b' in mode:
            with open(path, mode) as f:
                f.write(content)
        else:
            with open(path, mode, encoding='utf-8', newline='') as f:
                f.write(content)
        return path
    return _write
