# =============================================================================
# Generation Pipeline
# =============================================================================
# Holds named prompt templates and a generation backend. A context is
# loaded, then a template is rendered against it and sent to the model.
#
# The stored context is shared mutable state: load_context() followed by
# execute() is not atomic. Give each concurrent worker its own pipeline.

from dataclasses import dataclass

from stemrag.errors import GenerationError, NoContextError, UnknownTemplateError
from stemrag.templates import TemplateEngine


@dataclass(frozen=True)
class Response:
    """The generated answer."""
    content: str


class GenerationPipeline:
    """
    Renders registered templates and runs them through a generator.

    Args:
        generator: Object with ``generate(prompt, max_tokens) -> str``
        max_tokens: Generation cap; output is cut off there, not an error
        engine: TemplateEngine to parse/render with (default role format
                if omitted)
        logger: Optional logger
    """

    def __init__(self, generator, max_tokens, engine=None, logger=None):
        self.generator = generator
        self.max_tokens = max_tokens
        self.engine = engine or TemplateEngine()
        self.logger = logger
        self._templates = {}
        self._context = None

    @property
    def context(self):
        return self._context

    @property
    def template_names(self):
        return list(self._templates)

    def register_template(self, name, source):
        """
        Parse and store a template under a name, replacing any previous one.

        Raises:
            TemplateSyntaxError: If the source is malformed
        """
        self._templates[name] = self.engine.parse(source)

    def with_template(self, name, source):
        """Chaining form of register_template()."""
        self.register_template(name, source)
        return self

    def load_context(self, context):
        """Store the context for the next execute(), replacing the old one."""
        self._context = context

    def render(self, name):
        """
        Render a registered template against the stored context.

        Args:
            name: Template name

        Returns:
            str: The rendered prompt

        Raises:
            UnknownTemplateError: If no template has that name
            NoContextError: If no context has been loaded
            TemplateRenderError: If the context lacks a variable the template
                                 uses, or doesn't fit it
        """
        if name not in self._templates:
            raise UnknownTemplateError(f"No template registered as '{name}'")
        if self._context is None:
            raise NoContextError("load_context() must be called before execute()")

        template = self._templates[name]
        self.engine.check_context(template, self._context)
        return self.engine.render(template, self._context)

    def execute(self, name):
        """
        Render a template and generate the answer for it.

        The context stays loaded afterwards, so execute() can be repeated.

        Args:
            name: Template name

        Returns:
            Response: The model's answer

        Raises:
            UnknownTemplateError, NoContextError, TemplateRenderError:
                see render()
            GenerationError: If the backend fails
        """
        return self.generate(self.render(name))

    def generate(self, prompt):
        """
        Send an already rendered prompt to the generator.

        Args:
            prompt: Text from render()

        Returns:
            Response: The model's output, unmodified

        Raises:
            GenerationError: If the backend fails
        """
        if self.logger:
            self.logger.info(f"Generating ({len(prompt)} chars, max {self.max_tokens} tokens)")

        try:
            output = self.generator.generate(prompt, self.max_tokens)
        except Exception as e:
            raise GenerationError(f"Generation failed: {e}") from e

        return Response(content='' if output is None else output)
