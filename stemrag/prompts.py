# =============================================================================
# Prompt Templates
# =============================================================================
# The built-in query template. It can be replaced per run with
# prompt.template_file in the config (or --template-file on the CLI).

from stemrag.config import resolve_path


QUERY_TEMPLATE = """
{{#chat}}
    {{#system}}
    You are a highly advanced assistant for STEM learning. You receive a prompt from a user and relevant excerpts extracted from slack messages. You then answer truthfully to the best of your ability. If you do not know the answer, your response is I don't know.
    {{/system}}
    {{#user}}
    {{user_prompt}}
    {{/user}}
    {{#system}}
    Based on the retrieved information from the slack messages, here are the relevant excerpts:
    {{#each payloads}}
    {{this}}
    {{/each}}
    Please provide a comprehensive answer to the user's question, integrating insights from these excerpts and your general knowledge.
    {{/system}}
{{/chat}}
"""


def load_template_source(config):
    """
    Get the source of the query template.

    Args:
        config: Configuration dictionary (uses prompt.template_file)

    Returns:
        str: The custom template file's contents, or QUERY_TEMPLATE
    """
    template_file = config.get('prompt', {}).get('template_file')
    if not template_file:
        return QUERY_TEMPLATE

    with open(resolve_path(template_file), 'r', encoding='utf-8') as f:
        return f.read()
