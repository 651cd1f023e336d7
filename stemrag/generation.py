# =============================================================================
# Generation Backends
# =============================================================================
# This module loads the language model that writes the final answer.
# Both backends expose the same capability:
#
#     generate(prompt, max_tokens) -> str
#
# The default runs a quantized GGUF model in-process with llama.cpp; the
# alternative sends the prompt to an OpenAI-compatible completions endpoint
# (a local llama.cpp / vLLM server, or the OpenAI API itself).

from llama_cpp import Llama
from openai import OpenAI

from stemrag.config import get_secrets, resolve_path
from stemrag.errors import ModelLoadError


class LlamaCppGenerator:
    """
    A local quantized model loaded from a GGUF file.

    Args:
        model_path: Path to the .gguf weights
        n_ctx: Context window size in tokens
        n_gpu_layers: Layers to offload to the GPU (0 = CPU only)
        seed: Sampling seed
        temperature: Sampling temperature
        top_p: Optional nucleus sampling cutoff
    """

    def __init__(self, model_path, n_ctx=8192, n_gpu_layers=0, seed=None,
                 temperature=0.8, top_p=None):
        self.model_name = str(model_path)
        self.temperature = temperature
        self.top_p = top_p
        self._llm = Llama(
            model_path=str(model_path),
            n_ctx=n_ctx,
            n_gpu_layers=n_gpu_layers,
            seed=seed if seed is not None else -1,
            verbose=False,
        )

    def generate(self, prompt, max_tokens):
        """
        Generate a completion for the prompt.

        Generation stops after max_tokens tokens; the text produced so far
        is returned as-is.
        """
        options = {'max_tokens': max_tokens, 'temperature': self.temperature}
        if self.top_p is not None:
            options['top_p'] = self.top_p

        output = self._llm.create_completion(prompt, **options)
        return output['choices'][0]['text']


class OpenAICompatibleGenerator:
    """
    Completions through the OpenAI client.

    Args:
        client: An OpenAI client (base_url may point at a local server)
        model: Model name the server knows the weights by
        temperature: Sampling temperature
        top_p: Optional nucleus sampling cutoff
        seed: Optional sampling seed
    """

    def __init__(self, client, model, temperature=0.8, top_p=None, seed=None):
        self.model_name = model
        self._client = client
        self.temperature = temperature
        self.top_p = top_p
        self.seed = seed

    def generate(self, prompt, max_tokens):
        options = {'temperature': self.temperature}
        if self.top_p is not None:
            options['top_p'] = self.top_p
        if self.seed is not None:
            options['seed'] = self.seed

        response = self._client.completions.create(
            model=self.model_name,
            prompt=prompt,
            max_tokens=max_tokens,
            **options
        )
        return response.choices[0].text


def create_generator(config, logger=None):
    """
    Load the generation backend selected by generation.provider.

    Args:
        config: Configuration dictionary with a 'generation' section
        logger: Optional logger for tracking progress

    Returns:
        LlamaCppGenerator or OpenAICompatibleGenerator

    Raises:
        ModelLoadError: If the provider is unknown, the model file is
                        missing, or the model fails to load
    """
    settings = config.get('generation', {})
    provider = settings.get('provider', 'llama_cpp')

    if provider == 'llama_cpp':
        if not settings.get('model_path'):
            raise ModelLoadError("generation.model_path is not configured")

        model_path = resolve_path(settings['model_path'])
        if not model_path.is_file():
            raise ModelLoadError(f"Model file not found: {model_path}")

        message = f"Loading generation model from {model_path}..."
        if logger:
            logger.info(message)
        else:
            print(message)

        try:
            generator = LlamaCppGenerator(
                model_path,
                n_ctx=settings.get('n_ctx', 8192),
                n_gpu_layers=settings.get('n_gpu_layers', 0),
                seed=settings.get('seed'),
                temperature=settings.get('temperature', 0.8),
                top_p=settings.get('top_p'),
            )
        except Exception as e:
            raise ModelLoadError(f"Could not load generation model {model_path}: {e}") from e

    elif provider == 'openai':
        model = settings.get('model')
        if not model:
            raise ModelLoadError("generation.model is not configured")

        message = f"Using generation model {model} at {settings.get('base_url') or 'api.openai.com'}"
        if logger:
            logger.info(message)
        else:
            print(message)

        secrets = get_secrets()
        client = OpenAI(
            api_key=secrets.get('openai_api_key') or 'not-needed',
            base_url=settings.get('base_url'),
        )
        generator = OpenAICompatibleGenerator(
            client,
            model,
            temperature=settings.get('temperature', 0.8),
            top_p=settings.get('top_p'),
            seed=settings.get('seed'),
        )

    else:
        raise ModelLoadError(f"Unknown generation provider: {provider}")

    return generator
