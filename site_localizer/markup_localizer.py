"""
Extraction and rewriting of translatable text in HTML documents.

Entity references are kept exactly as written: every ``&`` is swapped for a
marker before parsing and swapped back after serialization, so the parser never
decodes ``&nbsp;`` or ``&copy;`` and the translator sees the source text.
"""
import logging
import os
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Union

from bs4 import (
    BeautifulSoup,
    CData,
    Comment,
    Declaration,
    Doctype,
    NavigableString,
    ProcessingInstruction,
    Tag
)

from site_localizer.translation_client import is_whitespace_only, translate_unique

logger = logging.getLogger(__name__)

TRANSLATABLE_ATTRIBUTES = frozenset({'alt', 'title', 'placeholder', 'aria-label', 'value', 'label'})
SKIPPED_TAGS = frozenset({'script', 'style'})
NON_TEXT_STRINGS = (Comment, Declaration, Doctype, CData, ProcessingInstruction)

# Unicode noncharacter standing in for '&' while the document is parsed.
AMPERSAND_MARK = '\ufdd0'
_ENTITY_REF_RE = re.compile(r'&(?:#[0-9]+|#[xX][0-9a-fA-F]+|[A-Za-z][A-Za-z0-9]*);')


@dataclass(frozen=True)
class TextUnit:
    node: NavigableString
    text: str


@dataclass(frozen=True)
class AttributeUnit:
    element: Tag
    name: str
    text: str


MarkupUnit = Union[TextUnit, AttributeUnit]


def protect_entities(html: str) -> str:
    return html.replace('&', AMPERSAND_MARK)


def restore_entities(html: str) -> str:
    return html.replace(AMPERSAND_MARK, '&')


def has_translatable_text(text: str) -> bool:
    """False for values made only of whitespace and entity references, such as ``&nbsp;``."""
    return not is_whitespace_only(_ENTITY_REF_RE.sub('', text))


def _is_text_node(child) -> bool:
    return isinstance(child, NavigableString) and not isinstance(child, NON_TEXT_STRINGS)


def extract_units(soup: BeautifulSoup) -> List[MarkupUnit]:
    """
    Collect translatable units in document order.

    Text directly inside ``script`` and ``style`` elements is skipped, as are
    comments and other non-text strings. Values holding nothing but whitespace
    and entity references are never units. Unit texts carry their entity
    references as written in the source.
    """
    units: List[MarkupUnit] = []
    # The soup itself holds any text at the top level of a fragment.
    for element in [soup, *soup.find_all(True)]:
        if element.name.lower() in SKIPPED_TAGS:
            continue
        for name, value in element.attrs.items():
            if name.lower() not in TRANSLATABLE_ATTRIBUTES or not isinstance(value, str):
                continue
            text = restore_entities(value)
            if has_translatable_text(text):
                units.append(AttributeUnit(element=element, name=name, text=text))
        for child in element.children:
            if not _is_text_node(child):
                continue
            text = restore_entities(str(child))
            if has_translatable_text(text):
                units.append(TextUnit(node=child, text=text))
    return units


def apply_translations(units: List[MarkupUnit], translations: Dict[str, Optional[str]]) -> int:
    """
    Write translated values back into the document.

    Units whose text has no translation (``None`` or missing) keep their
    original value. A ``<`` in translated text is escaped so it cannot open a
    tag. Returns the number of locations that were rewritten.
    """
    applied = 0
    for unit in units:
        translated = translations.get(unit.text)
        if translated is None:
            continue
        match unit:
            case TextUnit(node=node):
                node.replace_with(NavigableString(protect_entities(translated.replace('<', '&lt;'))))
            case AttributeUnit(element=element, name=name):
                element[name] = protect_entities(translated)
            case _:
                raise TypeError(f"Unknown markup unit: {unit!r}")
        applied += 1
    return applied


async def localize_html(content: str, translator, target_language: str) -> str:
    """Return ``content`` with every translatable unit translated."""
    soup = BeautifulSoup(protect_entities(content), 'html.parser')
    units = extract_units(soup)
    unique_texts = list(dict.fromkeys(unit.text for unit in units))
    logger.debug("Found %d markup unit(s), %d unique.", len(units), len(unique_texts))

    translations = await translate_unique(translator, unique_texts, target_language)
    apply_translations(units, translations)
    # No entity substitution on output: every '&' is still a marker at this point.
    return restore_entities(soup.decode(formatter=None))


async def localize_html_file(
        file_path: str,
        output_path: str,
        translator,
        target_language: str,
        dry_run: bool = False
) -> None:
    with open(file_path, 'r', encoding='utf-8', newline='') as f:
        content = f.read()

    localized = await localize_html(content, translator, target_language)

    if dry_run:
        logger.info(f"[Dry Run] Would write localized HTML to '{output_path}'.")
        return
    os.makedirs(os.path.dirname(output_path), exist_ok=True)
    with open(output_path, 'w', encoding='utf-8', newline='') as f:
        f.write(localized)
    logger.info(f"[HTML] {file_path} -> {output_path}")
