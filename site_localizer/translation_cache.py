"""Persistent translation memo backed by a single JSON file."""
import json
import logging
import os
import tempfile
from typing import Dict, Optional

import jsonschema

logger = logging.getLogger(__name__)

# The cache file is a flat object whose values are all translated strings.
CACHE_SCHEMA = {
    "type": "object",
    "patternProperties": {
        "^.*$": {"type": "string"}
    },
    "additionalProperties": False
}

KEY_SEPARATOR = "::"


def cache_key(language: str, text: str) -> str:
    """Build the composite ``language::originalText`` key."""
    return f"{language}{KEY_SEPARATOR}{text}"


class TranslationCache:
    """
    Maps (target language, source text) to translated text.

    Entries are never expired or pruned. Every ``put`` is expected to be
    followed by ``flush``, which rewrites the whole file so that a killed
    process loses at most the translation that was in flight.
    """

    def __init__(self, file_path: str):
        self.file_path = file_path
        self._entries: Dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def load(self) -> Dict[str, str]:
        """
        Read the cache file into memory.

        A missing file, invalid JSON or a document that is not a flat mapping
        of strings all yield an empty cache. This method never raises.
        """
        self._entries = {}
        if not os.path.exists(self.file_path):
            logger.info("No translation cache at '%s'; starting empty.", self.file_path)
            return self._entries
        try:
            with open(self.file_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            jsonschema.validate(instance=data, schema=CACHE_SCHEMA)
        except json.JSONDecodeError as json_exc:
            logger.warning(f"Translation cache '{self.file_path}' is not valid JSON ({json_exc}); starting empty.")
            return self._entries
        except jsonschema.ValidationError as schema_exc:
            logger.warning(f"Translation cache '{self.file_path}' has an unexpected shape ({schema_exc.message}); starting empty.")
            return self._entries
        except (OSError, UnicodeDecodeError) as io_exc:
            logger.warning(f"Could not read translation cache '{self.file_path}' ({io_exc}); starting empty.")
            return self._entries

        self._entries = data
        logger.info("Loaded %d cached translation(s) from '%s'.", len(self._entries), self.file_path)
        return self._entries

    def get(self, language: str, text: str) -> Optional[str]:
        return self._entries.get(cache_key(language, text))

    def put(self, language: str, text: str, translated: str) -> None:
        self._entries[cache_key(language, text)] = translated

    def flush(self) -> None:
        """
        Rewrite the entire cache file.

        The content goes to a temporary file in the same directory first and is
        then moved over the old file, so readers never see a half-written cache.
        """
        directory = os.path.dirname(os.path.abspath(self.file_path))
        os.makedirs(directory, exist_ok=True)
        temp_path = None
        try:
            with tempfile.NamedTemporaryFile(
                mode='w', delete=False, dir=directory, suffix='.tmp', encoding='utf-8'
            ) as temp_f:
                temp_path = temp_f.name
                json.dump(self._entries, temp_f, ensure_ascii=False, indent=2)
                temp_f.flush()
                os.fsync(temp_f.fileno())
            os.replace(temp_path, self.file_path)
            temp_path = None
        finally:
            if temp_path and os.path.exists(temp_path):
                os.remove(temp_path)
