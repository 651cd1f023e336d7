# =============================================================================
# Prompt Templates
# =============================================================================
# A small Handlebars-style template language for role-structured prompts:
#
#   {{#system}} ... {{/system}}     role block (also user, assistant)
#   {{#each payloads}} ... {{/each}} repeat the body once per list item
#   {{user_prompt}}                  variable reference
#   {{this}} / {{@index}}            current item / position inside #each
#   {{#chat}} ... {{/chat}}          optional wrapper, adds no output
#   {{! comment }}                   ignored
#
# Templates are parsed once into a tree of nodes and rendered by walking
# that tree against a Context, so structural mistakes are reported at parse
# time instead of producing a half-substituted prompt.

import re
from dataclasses import dataclass, field
from typing import Tuple

from stemrag.errors import TemplateRenderError, TemplateSyntaxError


ROLES = ('system', 'user', 'assistant')

DEFAULT_ROLE_FORMAT = "<|{role}|>\n{content}"

_TAG_RE = re.compile(r'\{\{(.*?)\}\}', re.DOTALL)
_NAME_RE = re.compile(r'^(?:@index|[A-Za-z_][A-Za-z0-9_]*)$')

# Stand-in for a substituted value while the surrounding template text is
# tidied. NUL can't appear in template source.
_SLOT = '\x00{}\x00'
_SLOT_RE = re.compile(r'\x00(\d+)\x00')


# =============================================================================
# Nodes
# =============================================================================

@dataclass(frozen=True)
class Literal:
    text: str


@dataclass(frozen=True)
class VariableRef:
    name: str
    line: int = 0


@dataclass(frozen=True)
class IterationBlock:
    variable: str
    body: Tuple = ()
    line: int = 0


@dataclass(frozen=True)
class RoleBlock:
    role: str
    body: Tuple = ()
    line: int = 0


@dataclass(frozen=True)
class Template:
    """A parsed template. Immutable, so one instance can be rendered many times."""
    nodes: Tuple
    source: str = field(default='', compare=False, repr=False)

    def referenced_variables(self):
        """
        Names of the context variables this template needs.

        Returns:
            list: Variable names in first-use order ('this' and '@index'
                  are loop-scoped and not included)
        """
        names = []

        def visit(nodes):
            for node in nodes:
                if isinstance(node, VariableRef) and node.name not in ('this', '@index'):
                    name = node.name
                elif isinstance(node, IterationBlock):
                    name = node.variable
                else:
                    name = None

                if name and name not in names:
                    names.append(name)

                if isinstance(node, (IterationBlock, RoleBlock)):
                    visit(node.body)

        visit(self.nodes)
        return names


# =============================================================================
# Parsing
# =============================================================================

class _Frame:
    """An open block while parsing."""

    def __init__(self, kind, name, line):
        self.kind = kind      # 'role', 'each' or 'chat'
        self.name = name      # role name, list variable, or 'chat'
        self.line = line
        self.children = []


def _line_of(source, pos):
    return source.count('\n', 0, pos) + 1


def _add_literal(children, text, source, pos):
    if not text:
        return
    if '{{' in text:
        raise TemplateSyntaxError("Unterminated '{{' tag", _line_of(source, pos + text.index('{{')))
    if '}}' in text:
        raise TemplateSyntaxError("Stray '}}' without an opening '{{'", _line_of(source, pos + text.index('}}')))
    if '\x00' in text:
        raise TemplateSyntaxError("NUL character in template text", _line_of(source, pos + text.index('\x00')))
    children.append(Literal(text))


def parse(source):
    """
    Parse template source into a Template.

    Args:
        source: The template text

    Returns:
        Template: The parsed node tree

    Raises:
        TemplateSyntaxError: On unbalanced or mismatched blocks, unknown
                             block names, role blocks nested inside other
                             blocks, empty tags, or unterminated tags
    """
    root = _Frame('root', None, 0)
    stack = [root]
    pos = 0

    for match in _TAG_RE.finditer(source):
        _add_literal(stack[-1].children, source[pos:match.start()], source, pos)
        pos = match.end()

        line = _line_of(source, match.start())
        tag = match.group(1).strip()

        if not tag:
            raise TemplateSyntaxError("Empty tag '{{}}'", line)

        if tag.startswith('!'):
            continue

        if tag.startswith('#'):
            stack.append(_open_block(tag[1:].split(), stack, line))
            continue

        if tag.startswith('/'):
            _close_block(tag[1:].strip(), stack, line)
            continue

        if not _NAME_RE.match(tag):
            raise TemplateSyntaxError(f"Invalid variable reference '{{{{{tag}}}}}'", line)
        stack[-1].children.append(VariableRef(tag, line))

    _add_literal(stack[-1].children, source[pos:], source, pos)

    if len(stack) > 1:
        frame = stack[-1]
        opening = f"each {frame.name}" if frame.kind == 'each' else frame.name
        raise TemplateSyntaxError(f"Block '{{{{#{opening}}}}}' is never closed", frame.line)

    return Template(nodes=tuple(root.children), source=source)


def _open_block(words, stack, line):
    if not words:
        raise TemplateSyntaxError("Block tag '{{#}}' has no name", line)

    name, args = words[0], words[1:]

    if name == 'each':
        if len(args) != 1 or not _NAME_RE.match(args[0]):
            raise TemplateSyntaxError("'{{#each}}' needs exactly one variable name", line)
        return _Frame('each', args[0], line)

    if args:
        raise TemplateSyntaxError(f"Block '{{{{#{name}}}}}' takes no arguments", line)

    if name in ROLES:
        if any(frame.kind in ('role', 'each') for frame in stack):
            raise TemplateSyntaxError(f"Role block '{{{{#{name}}}}}' must not be nested in another block", line)
        return _Frame('role', name, line)

    if name == 'chat':
        if len(stack) > 1:
            raise TemplateSyntaxError("'{{#chat}}' must be at the top level", line)
        return _Frame('chat', 'chat', line)

    raise TemplateSyntaxError(f"Unknown block '{{{{#{name}}}}}'", line)


def _close_block(name, stack, line):
    if len(stack) == 1:
        raise TemplateSyntaxError(f"Closing '{{{{/{name}}}}}' has no matching opening block", line)

    frame = stack.pop()
    expected = 'each' if frame.kind == 'each' else frame.name
    if name != expected:
        raise TemplateSyntaxError(
            f"Closing '{{{{/{name}}}}}' does not match '{{{{#{expected}}}}}' opened on line {frame.line}",
            line,
        )

    parent = stack[-1].children
    if frame.kind == 'each':
        parent.append(IterationBlock(frame.name, tuple(frame.children), frame.line))
    elif frame.kind == 'role':
        parent.append(RoleBlock(frame.name, tuple(frame.children), frame.line))
    else:
        # chat only groups its children
        parent.extend(frame.children)


# =============================================================================
# Rendering
# =============================================================================

def _to_text(value):
    if isinstance(value, (list, tuple)):
        return "\n".join(str(item) for item in value)
    return str(value)


def _tidy(text):
    """Strip every line and drop blank ones."""
    return "\n".join(line.strip() for line in text.splitlines() if line.strip())


def _fill(text, values):
    return _SLOT_RE.sub(lambda m: values[int(m.group(1))], text)


class TemplateEngine:
    """
    Parses and renders prompt templates.

    Args:
        role_format: Format string for each role block, with {role} and
                     {content} placeholders
    """

    def __init__(self, role_format=DEFAULT_ROLE_FORMAT):
        self.role_format = role_format

    def parse(self, source):
        return parse(source)

    def check_context(self, template, context):
        """
        Make sure a context has every variable a template refers to.

        Raises:
            TemplateRenderError: Naming all the missing variables at once
        """
        missing = [name for name in template.referenced_variables() if name not in context]
        if missing:
            raise TemplateRenderError(f"Context is missing variables: {', '.join(missing)}")

    def render(self, template, context):
        """
        Render a template against a context.

        Role blocks come out in declaration order, each formatted with
        role_format and separated by a blank line. Text outside role blocks
        is kept if it isn't just whitespace.

        Only the template's own text is tidied (lines stripped, blank lines
        dropped). Substituted values are inserted exactly as given, so
        indented or multi-line excerpts reach the model unchanged.

        Args:
            template: A Template from parse()
            context: Mapping of variable name to value

        Returns:
            str: The rendered prompt

        Raises:
            TemplateRenderError: If a variable is missing or #each is bound
                                 to something that isn't a list
        """
        sections = []
        loose = []   # consecutive nodes outside any role block

        def flush():
            values = []
            text = self._render_nodes(tuple(loose), context, (), values).strip()
            if text:
                sections.append(_fill(text, values))
            loose.clear()

        for node in template.nodes:
            if not isinstance(node, RoleBlock):
                loose.append(node)
                continue

            flush()
            values = []
            content = _fill(_tidy(self._render_nodes(node.body, context, (), values)), values)
            sections.append(self.role_format.format(role=node.role, content=content))

        flush()
        return "\n\n".join(sections)

    def _render_nodes(self, nodes, context, loops, values):
        # loops: stack of (item, index) for the enclosing #each blocks.
        # Substituted text goes into values; the output only holds its slot.
        parts = []

        for node in nodes:
            if isinstance(node, Literal):
                parts.append(node.text)

            elif isinstance(node, VariableRef):
                values.append(_to_text(self._lookup(node, context, loops)))
                parts.append(_SLOT.format(len(values) - 1))

            elif isinstance(node, IterationBlock):
                if node.variable not in context:
                    raise TemplateRenderError(
                        f"'{{{{#each {node.variable}}}}}' (line {node.line}): variable not in context"
                    )
                items = context[node.variable]
                if not isinstance(items, (list, tuple)):
                    raise TemplateRenderError(
                        f"'{{{{#each {node.variable}}}}}' (line {node.line}): "
                        f"expected a list, got {type(items).__name__}"
                    )
                for index, item in enumerate(items):
                    parts.append(self._render_nodes(node.body, context, loops + ((item, index),), values))

            elif isinstance(node, RoleBlock):
                raise TemplateRenderError(f"Role block '{node.role}' (line {node.line}) is nested")

            else:
                raise TemplateRenderError(f"Unknown template node {node!r}")

        return "".join(parts)

    @staticmethod
    def _lookup(node, context, loops):
        if node.name in ('this', '@index'):
            if not loops:
                raise TemplateRenderError(
                    f"'{{{{{node.name}}}}}' (line {node.line}) used outside '{{{{#each}}}}'"
                )
            item, index = loops[-1]
            return item if node.name == 'this' else index

        if node.name not in context:
            raise TemplateRenderError(f"Variable '{node.name}' (line {node.line}) not in context")

        return context[node.name]


_default_engine = TemplateEngine()


def render(template, context):
    """Render with the default role format."""
    return _default_engine.render(template, context)
