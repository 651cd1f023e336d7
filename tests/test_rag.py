import pytest
from qdrant_client.http.exceptions import ResponseHandlingException

from stemrag.errors import (
    EmbeddingError,
    GenerationError,
    IndexConnectionError,
    StageError,
    TemplateSyntaxError,
)
from stemrag.rag import create_pipeline, format_answer, run_query, search_only
from tests.conftest import FakeGenerator, point, stringified


def test_scenario_a_full_chain(make_resources, five_points, config, null_logger):
    generator = FakeGenerator()
    resources = make_resources(five_points, generator=generator)

    result = run_query("What is a hash table?", "docs", resources, config, null_logger)

    assert [r.id for r in result.results] == [1, 2, 3, 4, 5]
    assert result.context["payloads"] == (
        "Hash tables store key/value pairs.",
        "Lookups are O(1) on average.",
        "Collisions are resolved by chaining.",
        "Open addressing scans for a free slot.",
        "Load factor triggers a resize.",
    )

    sections = result.prompt.split("\n\n")
    assert sections[1].startswith("<|user|>")
    assert result.prompt.count("What is a hash table?") == 1
    assert "What is a hash table?" in sections[1]
    assert sections[-1].startswith("<|system|>")
    for excerpt in result.context["payloads"]:
        assert sections[-1].count(excerpt) == 1

    assert generator.prompts == [result.prompt]
    assert generator.max_tokens == [256]
    assert result.response.content == "  A hash table maps keys to buckets.  "


def test_scenario_b_no_results_still_renders(make_resources, config, null_logger):
    resources = make_resources([])

    result = run_query("What is a hash table?", "docs", resources, config, null_logger)

    assert result.results == []
    assert result.context["payloads"] == ()
    assert "here are the relevant excerpts:\nPlease provide" in result.prompt
    assert result.response is not None


def test_undecodable_payloads_do_not_stop_the_chain(make_resources, config, null_logger):
    points = [
        point(1, 0.9, {"blob": {1, 2}}),
        point(2, 0.8, None),
        point(3, 0.7, {"text": stringified("survivor")}),
    ]
    result = run_query("q", "docs", make_resources(points), config, null_logger)

    assert result.context["payloads"] == ("survivor",)
    assert len(result.results) == 3


def test_search_uses_configured_top_k(make_resources, five_points, config, null_logger):
    config["retrieval"]["top_k"] = 2
    resources = make_resources(five_points)

    results = search_only("q", "docs", resources, config, null_logger)

    assert [r.id for r in results] == [1, 2]
    assert resources.index._client.queries[0]["collection_name"] == "docs"


def test_generate_false_stops_after_render(make_resources, five_points, config, null_logger):
    generator = FakeGenerator()
    result = run_query("q", "docs", make_resources(five_points, generator=generator), config,
                       null_logger, generate=False)

    assert result.prompt
    assert result.response is None
    assert generator.prompts == []


def test_empty_question_is_rejected(make_resources, config, null_logger):
    with pytest.raises(ValueError):
        run_query("   ", "docs", make_resources(), config, null_logger)


def test_embedding_failure_names_stage(make_resources, config, null_logger):
    resources = make_resources()

    def broken(text):
        raise EmbeddingError("model unloaded")

    resources.embedder.generate_embedding = broken

    with pytest.raises(StageError) as excinfo:
        run_query("q", "docs", resources, config, null_logger)
    assert excinfo.value.stage == "embedding"
    assert "embedding stage failed" in str(excinfo.value)


def test_search_failure_names_stage_and_skips_generation(make_resources, config, null_logger):
    generator = FakeGenerator()
    resources = make_resources(qdrant_error=ResponseHandlingException(OSError("down")), generator=generator)

    with pytest.raises(StageError) as excinfo:
        run_query("q", "docs", resources, config, null_logger)

    assert excinfo.value.stage == "search"
    assert isinstance(excinfo.value.cause, IndexConnectionError)
    assert generator.prompts == []


def test_generation_failure_names_stage(make_resources, five_points, config, null_logger):
    resources = make_resources(five_points, generator=FakeGenerator(error=RuntimeError("boom")))

    with pytest.raises(StageError) as excinfo:
        run_query("q", "docs", resources, config, null_logger)

    assert excinfo.value.stage == "generation"
    assert isinstance(excinfo.value.cause, GenerationError)


def test_bad_custom_template_fails_in_render_stage(make_resources, config, null_logger, tmp_path):
    template_file = tmp_path / "bad.hbs"
    template_file.write_text("{{#system}}never closed", encoding="utf-8")
    config["prompt"]["template_file"] = str(template_file)

    with pytest.raises(StageError) as excinfo:
        run_query("q", "docs", make_resources(), config, null_logger)

    assert excinfo.value.stage == "render"
    assert isinstance(excinfo.value.cause, TemplateSyntaxError)


def test_pipeline_can_be_reused_across_queries(make_resources, five_points, config, null_logger):
    generator = FakeGenerator()
    resources = make_resources(five_points, generator=generator)
    pipeline = create_pipeline(config, generator)

    first = run_query("first question", "docs", resources, config, null_logger, pipeline=pipeline)
    second = run_query("second question", "docs", resources, config, null_logger, pipeline=pipeline)

    assert "first question" in first.prompt
    assert "second question" in second.prompt
    assert pipeline.context["user_prompt"] == "second question"


def test_format_answer_lists_results(make_resources, five_points, config, null_logger):
    result = run_query("q", "docs", make_resources(five_points), config, null_logger)

    lines = format_answer(result).splitlines()

    assert lines[0] == "Response: A hash table maps keys to buckets."
    assert lines[2].startswith("Id:1, Score:0.9100, ")
    assert len([line for line in lines if line.startswith("Id:")]) == 5


def test_prompt_is_rendered_once_and_sent_unchanged(make_resources, five_points, config, null_logger):
    generator = FakeGenerator()
    pipeline = create_pipeline(config, generator)
    renders = []
    original_render = pipeline.render

    def counting_render(name):
        renders.append(name)
        return original_render(name)

    pipeline.render = counting_render

    result = run_query("q", "docs", make_resources(five_points, generator=generator), config,
                       null_logger, pipeline=pipeline)

    assert renders == ["query"]
    assert generator.prompts == [result.prompt]


def test_code_excerpts_keep_their_layout(make_resources, config, null_logger):
    snippet = "def lookup(table, key):\n    return table[hash(key) % len(table)]\n\nAverage case O(1)."
    generator = FakeGenerator()
    resources = make_resources([point(1, 0.9, {"text": stringified(snippet)})], generator=generator)

    run_query("Why is lookup fast?", "docs", resources, config, null_logger)

    assert generator.prompts[0].count(snippet) == 1
