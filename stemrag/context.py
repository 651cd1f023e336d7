# =============================================================================
# Context Building
# =============================================================================
# This module merges the user's question and the decoded search payloads
# into the named-variable Context that prompt templates render against.

from collections.abc import Mapping

from stemrag.payloads import Invalid, decode_payload


class Context(Mapping):
    """
    Immutable mapping from variable name to value.

    Values are strings, or tuples of strings for variables that templates
    iterate over with {{#each}}. Lists passed in are frozen into tuples.
    """

    def __init__(self, variables=None, **kwargs):
        data = dict(variables or {}, **kwargs)
        self._data = {name: self._freeze(value) for name, value in data.items()}

    @staticmethod
    def _freeze(value):
        if isinstance(value, list):
            return tuple(value)
        return value

    def __getitem__(self, name):
        return self._data[name]

    def __iter__(self):
        return iter(self._data)

    def __len__(self):
        return len(self._data)

    def __repr__(self):
        return f"Context({self._data!r})"

    def to_dict(self):
        """Plain dict copy, with tuples turned back into lists (for JSON)."""
        return {
            name: list(value) if isinstance(value, tuple) else value
            for name, value in self._data.items()
        }


class ContextBuilder:
    """
    Builds a Context from a query and its ordered search results.

    Args:
        logger: Optional logger for decode diagnostics
        separator: String used to join several usable values of one payload
    """

    def __init__(self, logger=None, separator="\n"):
        self.logger = logger
        self.separator = separator

    def _warn(self, message):
        if self.logger:
            self.logger.warning(message)
        else:
            print(f"Warning: {message}")

    def _debug(self, message):
        if self.logger:
            self.logger.debug(message)

    def payload_content(self, result):
        """
        Extract the displayable content of one search result.

        Args:
            result: A SearchResult

        Returns:
            str or None: The usable payload text, or None if the result has
                         no payload or nothing in it could be decoded
        """
        if not result.payload:
            self._warn(f"Result {result.id} has no payload, skipping")
            return None

        texts = []
        for key, decoded in decode_payload(result.payload):
            if isinstance(decoded, Invalid):
                self._warn(f"Result {result.id}: could not decode '{key}': {decoded.as_error()}")
                continue
            self._debug(f"Result {result.id}: '{key}' decoded as {type(decoded).__name__}")
            texts.append(decoded.text)

        if not texts:
            self._warn(f"Result {result.id}: no decodable payload values, skipping")
            return None

        return self.separator.join(texts)

    def build(self, query, results, extra=None):
        """
        Build the Context for one query.

        Results that contribute no content are left out of 'payloads', but
        the relative order of the rest is kept. No I/O, no randomness: the
        same inputs always give an equal Context.

        Args:
            query: The user's question
            results: Ordered list of SearchResult objects
            extra: Optional dict of additional template variables

        Returns:
            Context: With at least 'user_prompt' and 'payloads'
        """
        payloads = []
        for result in results:
            content = self.payload_content(result)
            if content is not None:
                payloads.append(content)

        variables = dict(extra or {})
        variables['user_prompt'] = query
        variables['payloads'] = payloads

        return Context(variables)
