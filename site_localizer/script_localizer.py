"""
Extraction and rewriting of user-facing string literals in script sources.

Sources are parsed with tree-sitter. Candidate literals are located on the
syntax tree, translated, and spliced back into the original text at their byte
ranges, so everything that is not a translated literal is reproduced exactly.
"""
import enum
import json
import logging
import os
import re
import shutil
from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, Iterable, List, Optional, Union

import tree_sitter_javascript
import tree_sitter_typescript
from tree_sitter import Language, Node, Parser, Tree

from site_localizer.translation_client import is_whitespace_only, translate_unique

logger = logging.getLogger(__name__)

SCRIPT_EXTENSIONS = frozenset({'.js', '.mjs', '.cjs', '.jsx', '.ts', '.tsx'})

# Parents whose `source` field holds a module path.
MODULE_SOURCE_PARENTS = frozenset({'import_statement', 'export_statement'})
# Parents whose string children are never user-facing.
NON_TEXT_PARENTS = frozenset({'import_require_clause', 'literal_type'})
OBJECT_KEY_PARENTS = frozenset({'pair', 'pair_pattern'})
MODULE_LOADERS = frozenset({b'require'})
FUNCTION_NODES = frozenset({
    'function_declaration',
    'function_expression',
    'function',
    'generator_function_declaration',
    'generator_function',
    'arrow_function',
    'method_definition'
})

_ESCAPE_RE = re.compile(r'\\(u\{[0-9a-fA-F]+\}|u[0-9a-fA-F]{4}|x[0-9a-fA-F]{2}|[0-3][0-7]{0,2}|[4-7][0-7]?|\r\n|[\s\S])')
_SIMPLE_ESCAPES = {
    'n': '\n',
    'r': '\r',
    't': '\t',
    'b': '\b',
    'f': '\f',
    'v': '\v'
}
_LINE_CONTINUATIONS = frozenset({'\n', '\r', '\r\n', '\u2028', '\u2029'})
_OCTAL_DIGITS = frozenset('01234567')
_LONE_SURROGATE_RE = re.compile('[\ud800-\udfff]')


class Dialect(enum.Flag):
    """Syntax extensions the parser must accept on top of plain JavaScript."""
    NONE = 0
    JSX = enum.auto()
    TYPESCRIPT = enum.auto()

    @classmethod
    def from_names(cls, names: Union[str, Iterable[str], None]) -> "Dialect":
        if names is None:
            return cls.NONE
        if isinstance(names, str):
            names = names.split(',')
        dialect = cls.NONE
        for name in names:
            name = str(name).strip()
            if not name:
                continue
            try:
                dialect |= cls[name.upper()]
            except KeyError:
                logger.warning("Ignoring unknown script dialect '%s'.", name)
        return dialect


class LiteralKind(enum.Enum):
    STRING = 'string'
    TEMPLATE = 'template'


class ScriptParseError(Exception):
    """Raised when a script source does not parse cleanly."""


@dataclass(frozen=True)
class ScriptLiteral:
    kind: LiteralKind
    start_byte: int
    end_byte: int
    text: str
    jsx_attribute: bool = False


@lru_cache(maxsize=None)
def _language_for(dialect: Dialect) -> Language:
    if Dialect.TYPESCRIPT in dialect:
        if Dialect.JSX in dialect:
            return Language(tree_sitter_typescript.language_tsx())
        return Language(tree_sitter_typescript.language_typescript())
    # The JavaScript grammar always accepts JSX.
    return Language(tree_sitter_javascript.language())


def dialect_for_path(file_path: str, configured: Dialect) -> Dialect:
    """TypeScript files always get a TypeScript grammar; other scripts use the configured dialect."""
    ext = os.path.splitext(file_path)[1].lower()
    if ext == '.ts':
        return Dialect.TYPESCRIPT
    if ext == '.tsx':
        return Dialect.TYPESCRIPT | Dialect.JSX
    return configured


def _first_error(node: Node) -> Optional[Node]:
    stack = [node]
    while stack:
        current = stack.pop()
        if current.type == 'ERROR' or current.is_missing:
            return current
        if current.has_error:
            stack.extend(reversed(current.children))
    return None


def parse_script(source: str, dialect: Dialect = Dialect.JSX | Dialect.TYPESCRIPT) -> Tree:
    """
    Parse ``source`` into a syntax tree.

    Raises:
        ScriptParseError: The tree contains syntax errors.
    """
    parser = Parser(_language_for(dialect))
    tree = parser.parse(source.encode('utf-8'))
    if tree.root_node.has_error:
        error_node = _first_error(tree.root_node) or tree.root_node
        row, column = error_node.start_point
        raise ScriptParseError(f"Unexpected syntax at line {row + 1}, column {column + 1}")
    return tree


def decode_js_string(raw: str, template: bool = False) -> str:
    """
    Resolve JavaScript escape sequences in the body of a string or template literal.

    Line continuations disappear; legacy octal escapes (``\\1``, ``\\101``) are
    decoded; surrogate pairs written as two ``\\u`` escapes are joined into one
    character while an unpaired one stays a lone surrogate. Template bodies also
    get their line endings normalized to ``\\n``.
    """
    if template:
        raw = raw.replace('\r\n', '\n').replace('\r', '\n')

    def replace_escape(match: re.Match) -> str:
        seq = match.group(1)
        if seq in _LINE_CONTINUATIONS:
            return ''
        if seq in _SIMPLE_ESCAPES:
            return _SIMPLE_ESCAPES[seq]
        if seq[0] in _OCTAL_DIGITS:
            return chr(int(seq, 8))
        if seq.startswith('u{'):
            code_point = int(seq[2:-1], 16)
            return chr(code_point) if code_point <= 0x10FFFF else seq
        if seq[0] == 'u' and len(seq) == 5:
            return chr(int(seq[1:], 16))
        if seq[0] == 'x' and len(seq) == 3:
            return chr(int(seq[1:], 16))
        return seq

    decoded = _ESCAPE_RE.sub(replace_escape, raw)
    return decoded.encode('utf-16', 'surrogatepass').decode('utf-16', 'surrogatepass')


def _same_node(a: Optional[Node], b: Node) -> bool:
    return a is not None and a.type == b.type and a.start_byte == b.start_byte and a.end_byte == b.end_byte


def _is_module_argument(node: Node) -> bool:
    arguments = node.parent
    if arguments is None or arguments.type != 'arguments':
        return False
    call = arguments.parent
    if call is None or call.type != 'call_expression':
        return False
    args = [child for child in arguments.named_children if child.type != 'comment']
    if len(args) != 1:
        return False
    function = call.child_by_field_name('function')
    if function is None:
        return False
    return function.type == 'import' or (function.type == 'identifier' and function.text in MODULE_LOADERS)


def _is_directive(node: Node) -> bool:
    statement = node.parent
    if statement is None or statement.type != 'expression_statement':
        return False
    body = statement.parent
    if body is None:
        return False
    if body.type != 'program' and not (body.type == 'statement_block' and body.parent is not None
                                       and body.parent.type in FUNCTION_NODES):
        return False
    for sibling in body.named_children:
        if sibling.type in ('comment', 'hash_bang_line'):
            continue
        if sibling.type != 'expression_statement':
            return False
        expressions = [child for child in sibling.named_children if child.type != 'comment']
        if len(expressions) != 1 or expressions[0].type != 'string':
            return False
        if _same_node(sibling, statement):
            return True
    return False


def _is_excluded_string(node: Node) -> bool:
    """True for string literals that are module paths, object keys, directives or types."""
    parent = node.parent
    if parent is None:
        return False
    if parent.type in MODULE_SOURCE_PARENTS and _same_node(parent.child_by_field_name('source'), node):
        return True
    if parent.type in NON_TEXT_PARENTS:
        return True
    if parent.type in OBJECT_KEY_PARENTS and _same_node(parent.child_by_field_name('key'), node):
        return True
    if _is_module_argument(node):
        return True
    return _is_directive(node)


def _is_tagged_template(node: Node) -> bool:
    parent = node.parent
    return (parent is not None and parent.type == 'call_expression'
            and _same_node(parent.child_by_field_name('arguments'), node))


def _is_translatable_text(text: str) -> bool:
    # A lone surrogate has no UTF-8 form, so such a literal can be neither sent nor cached.
    return not is_whitespace_only(text) and _LONE_SURROGATE_RE.search(text) is None


def extract_literals(tree: Tree) -> List[ScriptLiteral]:
    """
    Collect translatable literals in source order.

    Template literals with substitutions are not candidates themselves, but
    strings inside their substitutions are. Literals holding an unpaired
    surrogate escape are left untouched.
    """
    literals: List[ScriptLiteral] = []
    stack = [tree.root_node]
    while stack:
        node = stack.pop()
        if node.type == 'string':
            if not _is_excluded_string(node):
                raw = node.text.decode('utf-8')[1:-1]
                in_jsx = node.parent is not None and node.parent.type == 'jsx_attribute'
                text = raw if in_jsx else decode_js_string(raw)
                if _is_translatable_text(text):
                    literals.append(ScriptLiteral(LiteralKind.STRING, node.start_byte, node.end_byte, text, in_jsx))
            continue
        if node.type == 'template_string':
            has_substitution = any(child.type == 'template_substitution' for child in node.children)
            if not has_substitution:
                if not _is_tagged_template(node):
                    text = decode_js_string(node.text.decode('utf-8')[1:-1], template=True)
                    if _is_translatable_text(text):
                        literals.append(ScriptLiteral(LiteralKind.TEMPLATE, node.start_byte, node.end_byte, text))
                continue
        stack.extend(reversed(node.children))
    return literals


def render_string_literal(text: str, jsx_attribute: bool = False) -> str:
    """Render ``text`` as a double-quoted literal."""
    if jsx_attribute:
        return '"' + text.replace('"', '&quot;') + '"'
    return json.dumps(text, ensure_ascii=False)


def rewrite_source(source: str, literals: List[ScriptLiteral], translations: Dict[str, Optional[str]]) -> str:
    """
    Replace every literal with a plain string literal holding its translation.

    A literal without a translation is rewritten with its original text, so
    template literals always come out as plain strings.
    """
    source_bytes = source.encode('utf-8')
    pieces = []
    position = 0
    for literal in sorted(literals, key=lambda item: item.start_byte):
        translated = translations.get(literal.text)
        if translated is None:
            translated = literal.text
        pieces.append(source_bytes[position:literal.start_byte])
        pieces.append(render_string_literal(translated, literal.jsx_attribute).encode('utf-8'))
        position = literal.end_byte
    pieces.append(source_bytes[position:])
    return b''.join(pieces).decode('utf-8')


async def localize_script(
        source: str,
        translator,
        target_language: str,
        dialect: Dialect = Dialect.JSX | Dialect.TYPESCRIPT
) -> str:
    """
    Return ``source`` with its user-facing literals translated.

    Raises:
        ScriptParseError: ``source`` could not be parsed.
    """
    tree = parse_script(source, dialect)
    literals = extract_literals(tree)
    unique_texts = list(dict.fromkeys(literal.text for literal in literals))
    logger.debug("Found %d script literal(s), %d unique.", len(literals), len(unique_texts))

    translations = await translate_unique(translator, unique_texts, target_language)
    return rewrite_source(source, literals, translations)


async def localize_script_file(
        file_path: str,
        output_path: str,
        translator,
        target_language: str,
        dialect: Dialect = Dialect.JSX | Dialect.TYPESCRIPT,
        dry_run: bool = False
) -> bool:
    """
    Localize one script file into ``output_path``.

    Returns False when the source did not parse and was copied verbatim instead.
    """
    with open(file_path, 'r', encoding='utf-8', newline='') as f:
        source = f.read()

    try:
        localized = await localize_script(source, translator, target_language, dialect_for_path(file_path, dialect))
    except ScriptParseError as parse_exc:
        logger.warning(f"Failed to parse script (copying as-is): {file_path}: {parse_exc}")
        if dry_run:
            logger.info(f"[Dry Run] Would copy '{file_path}' to '{output_path}'.")
        else:
            os.makedirs(os.path.dirname(output_path), exist_ok=True)
            shutil.copyfile(file_path, output_path)
        return False

    if dry_run:
        logger.info(f"[Dry Run] Would write localized script to '{output_path}'.")
        return True
    os.makedirs(os.path.dirname(output_path), exist_ok=True)
    with open(output_path, 'w', encoding='utf-8', newline='') as f:
        f.write(localized)
    logger.info(f"[JS] {file_path} -> {output_path}")
    return True
